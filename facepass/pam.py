"""PAM authentication hook.

Loaded through pam_python via the wrapper in scripts/facepass_pam.py::

    auth sufficient pam_python.so /lib/security/facepass_pam.py threshold=0.92 debug

Options:
    source=PATH      Verify against a static image instead of the camera
    device=DEVICE    Camera device (default from configuration)
    threshold=X      Similarity threshold in (0, 1] (default 0.90)
    debug            Log at debug level

The PAM user name is the only profile considered. "Service unavailable"
results (no enrollment, camera, model or storage failure) are reported as
AUTHINFO_UNAVAIL so the stack can fall through to a password prompt.
"""

import logging
import logging.handlers
import threading
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import Optional, Sequence

from .capture import open_source
from .config import DEFAULT_THRESHOLD, Settings, valid_threshold
from .detection import FaceDetector
from .errors import FacePassError
from .recognition import OnnxEmbeddingBackend
from .verification import (
    StatusEvent,
    VerificationRequest,
    VerificationStatus,
    VerificationWorker,
)

logger = logging.getLogger("facepass.pam")


class PamResult(Enum):
    """Authentication outcome, named after the PAM return codes."""
    SUCCESS = "PAM_SUCCESS"
    AUTH_ERR = "PAM_AUTH_ERR"
    AUTHINFO_UNAVAIL = "PAM_AUTHINFO_UNAVAIL"
    USER_UNKNOWN = "PAM_USER_UNKNOWN"


@dataclass
class ModuleOptions:
    """Options from the PAM configuration line."""
    source: Optional[str] = None
    device: Optional[str] = None
    threshold: float = DEFAULT_THRESHOLD
    debug: bool = False


def parse_options(args: Sequence[str]) -> ModuleOptions:
    """Parse ``key=value`` module options, ignoring bad ones with a warning."""
    options = ModuleOptions()

    for arg in args:
        if arg == "debug":
            options.debug = True
            continue

        key, sep, value = arg.partition("=")
        if not sep or not value:
            logger.warning(f"Ignoring malformed option '{arg}'")
            continue

        if key == "source":
            options.source = value
        elif key == "device":
            options.device = value
        elif key == "threshold":
            try:
                options.threshold = float(value)
            except ValueError:
                logger.warning(f"Invalid threshold '{value}'")
        else:
            logger.warning(f"Unknown option '{key}'")

    if not valid_threshold(options.threshold):
        logger.warning(
            f"Threshold {options.threshold:.3f} out of range, resetting to {DEFAULT_THRESHOLD:.2f}"
        )
        options.threshold = DEFAULT_THRESHOLD

    return options


def result_for(event: StatusEvent) -> PamResult:
    """Map a terminal verification status to a PAM result."""
    if event.status is VerificationStatus.MATCH:
        return PamResult.SUCCESS
    if event.status is VerificationStatus.NO_MATCH:
        # No scored candidate means the user never enrolled
        return PamResult.AUTH_ERR if event.name else PamResult.AUTHINFO_UNAVAIL
    if event.status is VerificationStatus.ERROR:
        return PamResult.AUTHINFO_UNAVAIL
    return PamResult.AUTH_ERR


def build_worker(settings: Settings) -> VerificationWorker:
    return VerificationWorker(
        store_path=settings.storage.path,
        detector=FaceDetector.from_config(settings.detection),
        extractor_factory=partial(OnnxEmbeddingBackend.from_config, settings.model),
        capture_config=settings.capture,
        source_factory=partial(open_source, camera=settings.camera),
    )


def authenticate(
    user: Optional[str],
    options: ModuleOptions,
    settings: Optional[Settings] = None,
    worker: Optional[VerificationWorker] = None,
    cancel: Optional[threading.Event] = None,
) -> PamResult:
    """Verify the face in front of the camera against ``user``'s profile."""
    if not user:
        logger.error("No user name supplied")
        return PamResult.USER_UNKNOWN

    try:
        settings = settings or Settings.load()
        worker = worker or build_worker(settings)
        request = VerificationRequest.from_settings(
            settings,
            source=options.source or options.device,
            target_name=user,
            allow_all=False,
            threshold=options.threshold,
        )
        event = worker.run(request, cancel or threading.Event())
    except FacePassError as e:
        logger.error(f"Verification unavailable for {user}: {e}")
        return PamResult.AUTHINFO_UNAVAIL

    result = result_for(event)
    logger.info(f"Face authentication for {user}: {event.status.value} {event.message}".rstrip())
    logger.debug(
        f"frames={event.total_frames} with_faces={event.frames_with_faces} "
        f"threshold={options.threshold:.2f} result={result.value}"
    )
    return result


def configure_logging(debug: bool = False):
    """Send facepass logs to the auth syslog facility."""
    root = logging.getLogger("facepass")
    root.setLevel(logging.DEBUG if debug else logging.INFO)
    if root.handlers:
        return
    try:
        handler = logging.handlers.SysLogHandler(
            address="/dev/log",
            facility=logging.handlers.SysLogHandler.LOG_AUTHPRIV,
        )
    except OSError:
        handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("facepass[%(process)d]: %(levelname)s %(message)s"))
    root.addHandler(handler)


# =============================================================================
# pam_python entry points
# =============================================================================

def _pam_code(pamh, result: PamResult) -> int:
    return getattr(pamh, result.value)


def pam_sm_authenticate(pamh, flags, argv):
    configure_logging("debug" in argv[1:])
    options = parse_options(argv[1:])

    try:
        user = pamh.get_user(None)
    except pamh.exception as e:
        logger.error(f"Could not get user name: {e}")
        return pamh.PAM_USER_UNKNOWN

    return _pam_code(pamh, authenticate(user, options))


def pam_sm_setcred(pamh, flags, argv):
    return pamh.PAM_SUCCESS
