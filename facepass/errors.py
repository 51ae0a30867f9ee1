"""Exception hierarchy for facepass.

Expected negative outcomes (no match, no face, cancelled) are reported as
status values, not raised. Everything here is a real failure.
"""


class FacePassError(Exception):
    """Base class for all facepass errors."""


class ConfigError(FacePassError):
    """Bad or missing setting. Logged and replaced by the default."""


class CaptureError(FacePassError):
    """Frame source could not be opened or kept alive."""


class DetectionUnavailable(FacePassError):
    """No face detector backend could be loaded."""


class EmbeddingError(FacePassError):
    """Embedding model failed to load or run."""


class StorageError(FacePassError):
    """Embedding store I/O failure or corrupt record."""


class DimensionMismatch(FacePassError, ValueError):
    """Embedding length differs from the ones already stored."""

    def __init__(self, expected: int, actual: int, name: str = ""):
        self.expected = expected
        self.actual = actual
        self.name = name
        target = f" for '{name}'" if name else ""
        super().__init__(
            f"Embedding dimension {actual} does not match {expected}{target}"
        )


class SessionError(FacePassError):
    """Base class for errors returned by session methods.

    ``error_name`` is the name reported over the session transport.
    """

    error_name = "Failed"


class SessionBusy(SessionError):
    error_name = "Busy"


class PermissionDenied(SessionError):
    error_name = "PermissionDenied"


class AlreadyInProgress(SessionError):
    error_name = "AlreadyInProgress"


class UnknownObject(SessionError, LookupError):
    """No transport object is registered at the given path."""

    error_name = "UnknownObject"


class UnknownMethod(SessionError, LookupError):
    """The transport object has no such method."""

    error_name = "UnknownMethod"
