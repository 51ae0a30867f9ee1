"""Verification data types."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from ..config import DEFAULT_THRESHOLD, Settings


class SessionState(Enum):
    """Verification session lifecycle state."""
    IDLE = "idle"
    CLAIMED = "claimed"
    VERIFYING = "verifying"


class VerificationStatus(Enum):
    """Status values reported for a verification run."""
    STARTED = "started"
    MATCH = "match"
    NO_MATCH = "no-match"
    NO_FACE = "no-face"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self is not VerificationStatus.STARTED


@dataclass
class VerificationRequest:
    """Parameters of one verification run.

    ``target_name`` is the only profile considered unless ``allow_all``.
    """
    source: str
    target_name: Optional[str] = None
    allow_all: bool = False
    threshold: float = DEFAULT_THRESHOLD
    warmup: float = 1.0
    duration: float = 2.0
    interval: float = 0.1

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        source: Optional[str] = None,
        target_name: Optional[str] = None,
        allow_all: Optional[bool] = None,
        threshold: Optional[float] = None,
    ) -> "VerificationRequest":
        """Build a request from configured defaults, overriding as given."""
        verification = settings.verification
        return cls(
            source=source or settings.camera.device,
            target_name=target_name if target_name is not None else verification.profile,
            allow_all=verification.allow_all if allow_all is None else allow_all,
            threshold=verification.threshold if threshold is None else threshold,
            warmup=settings.capture.warmup_delay,
            duration=settings.capture.capture_duration,
            interval=settings.capture.frame_interval,
        )


@dataclass
class StatusEvent:
    """One verification status notification.

    ``message`` is the free-form detail string sent over the transport,
    ``"<name>:<similarity>"`` when a candidate was scored.
    """
    status: VerificationStatus
    message: str = ""
    name: Optional[str] = None
    similarity: Optional[float] = None
    total_frames: int = 0
    frames_with_faces: int = 0
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def terminal(self) -> bool:
        return self.status.terminal

    @property
    def matched(self) -> bool:
        return self.status is VerificationStatus.MATCH

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "status": self.status.value,
            "message": self.message,
            "name": self.name,
            "similarity": self.similarity,
            "total_frames": self.total_frames,
            "frames_with_faces": self.frames_with_faces,
            "timestamp": self.timestamp.isoformat(),
        }


# Type alias for status listener
StatusListener = Callable[[StatusEvent], None]
