"""facepass: face verification for Linux login.

Stores per-user face embeddings, scores freshly captured faces against them
and runs verification as a cancellable, claimable session shared by the
command-line tool, the session service and the PAM hook.
"""

__version__ = "0.1.0"

from .config import Settings, load_config
from .errors import FacePassError

__all__ = ["FacePassError", "Settings", "__version__", "load_config"]
