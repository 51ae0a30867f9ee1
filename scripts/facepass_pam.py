"""pam_python wrapper for the facepass PAM hook.

Install to /lib/security/ and reference it from the PAM stack:

    auth sufficient pam_python.so /lib/security/facepass_pam.py
"""

from facepass.pam import pam_sm_authenticate, pam_sm_setcred  # noqa: F401
