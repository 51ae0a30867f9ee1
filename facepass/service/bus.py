"""Session service objects: Manager, Device and their signals.

The objects are transport-neutral. ``FaceService.call`` dispatches by the
transport's method names so any RPC layer (the HTTP app in ``api``, or a
message bus binding) can sit in front of it.
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from functools import partial
from typing import Any, Callable, Deque, Dict, List, Optional

from ..capture import FrameSource, open_source
from ..config import Settings
from ..detection import FaceDetector
from ..errors import FacePassError, UnknownMethod, UnknownObject
from ..recognition import BaseEmbeddingBackend, OnnxEmbeddingBackend
from ..verification import (
    SessionState,
    StatusEvent,
    VerificationRequest,
    VerificationSession,
    VerificationWorker,
)

logger = logging.getLogger(__name__)

SERVICE_NAME = "org.facepass"
MANAGER_PATH = "/org/facepass/Manager"
DEVICE_PATH = "/org/facepass/Device0"

MODE_ANY = "any"


# =============================================================================
# Signals
# =============================================================================

@dataclass
class Signal:
    """A notification emitted by a service object."""

    sequence: int
    path: str
    name: str
    args: tuple
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "sequence": self.sequence,
            "path": self.path,
            "name": self.name,
            "args": list(self.args),
            "timestamp": self.timestamp.isoformat(),
        }


class SignalLog:
    """Bounded, sequence-numbered log of emitted signals.

    Pollers read everything after the last sequence number they saw, or
    block in ``wait`` until a newer signal arrives.
    """

    def __init__(self, maxlen: int = 256):
        self._signals: Deque[Signal] = deque(maxlen=maxlen)
        self._sequence = 0
        self._condition = threading.Condition()

    @property
    def last_sequence(self) -> int:
        with self._condition:
            return self._sequence

    def emit(self, path: str, name: str, *args: Any) -> Signal:
        with self._condition:
            self._sequence += 1
            signal = Signal(self._sequence, path, name, tuple(args))
            self._signals.append(signal)
            self._condition.notify_all()

        logger.debug(f"Signal {path} {name}{signal.args}")
        return signal

    def since(self, after: int = 0, path: Optional[str] = None) -> List[Signal]:
        """Signals with a sequence number greater than ``after``."""
        with self._condition:
            return self._select(after, path)

    def wait(self, after: int = 0, path: Optional[str] = None, timeout: float = 0.0) -> List[Signal]:
        """Like ``since`` but waits up to ``timeout`` seconds for a new signal."""
        with self._condition:
            self._condition.wait_for(lambda: bool(self._select(after, path)), timeout=timeout)
            return self._select(after, path)

    def _select(self, after: int, path: Optional[str]) -> List[Signal]:
        return [s for s in self._signals if s.sequence > after and (path is None or s.path == path)]


# =============================================================================
# Objects
# =============================================================================

class Device:
    """Verification device object wrapping one VerificationSession."""

    METHODS = {
        "Claim": "claim",
        "Release": "release",
        "VerifyStart": "verify_start",
        "VerifyStop": "verify_stop",
    }

    def __init__(
        self,
        path: str,
        session: VerificationSession,
        request_factory: Callable[[str], VerificationRequest],
        signals: SignalLog,
    ):
        self.path = path
        self.session = session
        self.request_factory = request_factory
        self.signals = signals
        session.add_listener(self._on_status)

    @property
    def name(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    @property
    def state(self) -> SessionState:
        return self.session.state

    def claim(self):
        self.session.claim()

    def release(self):
        self.session.release()

    def verify_start(self, mode: str = MODE_ANY):
        request = self.request_factory(mode)
        logger.info(f"{self.name}: verify start (mode={mode or MODE_ANY}, source={request.source})")
        self.session.verify_start(request)

    def verify_stop(self):
        self.session.verify_stop()

    def _on_status(self, event: StatusEvent):
        self.signals.emit(self.path, "VerificationStatus", event.status.value, event.message)

    def to_dict(self) -> dict:
        return {"id": self.name, "path": self.path, "state": self.state.value}


class Manager:
    """Entry object listing the available devices."""

    METHODS = {
        "GetDefaultDevice": "get_default_device",
    }

    def __init__(self, path: str, signals: SignalLog):
        self.path = path
        self.signals = signals
        self._devices: Dict[str, Device] = {}

    def add_device(self, device: Device):
        self._devices[device.path] = device
        self.signals.emit(self.path, "DeviceListChanged", list(self._devices))

    @property
    def devices(self) -> List[Device]:
        return list(self._devices.values())

    def get_device(self, path: str) -> Device:
        """Look up a device by object path or by its short id."""
        device = self._devices.get(path)
        if device is None:
            device = next((d for d in self._devices.values() if d.name == path), None)
        if device is None:
            raise UnknownObject(f"No device at {path}")
        return device

    def get_default_device(self) -> str:
        if not self._devices:
            raise UnknownObject("No devices available")
        return next(iter(self._devices))


# =============================================================================
# Service
# =============================================================================

class FaceService:
    """Builds and owns the verification stack behind the session transport.

    Args:
        settings: Loaded settings
        detector: Face detector (loaded from settings if None)
        extractor_factory: Embedding backend factory (ONNX model from settings if None)
        source_factory: Frame source factory (camera or image by source name if None)
    """

    def __init__(
        self,
        settings: Settings,
        detector: Optional[FaceDetector] = None,
        extractor_factory: Optional[Callable[[], BaseEmbeddingBackend]] = None,
        source_factory: Optional[Callable[[str], FrameSource]] = None,
    ):
        self.settings = settings
        self.signals = SignalLog()

        self.detector = detector or FaceDetector.from_config(settings.detection)
        self.worker = VerificationWorker(
            store_path=settings.storage.path,
            detector=self.detector,
            extractor_factory=extractor_factory or partial(OnnxEmbeddingBackend.from_config, settings.model),
            capture_config=settings.capture,
            source_factory=source_factory or partial(open_source, camera=settings.camera),
        )
        self.session = VerificationSession(self.worker)

        self.manager = Manager(MANAGER_PATH, self.signals)
        self.device = Device(DEVICE_PATH, self.session, self.build_request, self.signals)
        self.manager.add_device(self.device)

        logger.info(f"Face service ready ({DEVICE_PATH}, store {settings.storage.path})")

    def build_request(self, mode: str = MODE_ANY) -> VerificationRequest:
        """Turn a VerifyStart mode into a request.

        ``"any"`` uses the configured profile and allow_all setting; any other
        value names the profile to verify against.
        """
        if not mode or mode == MODE_ANY:
            return VerificationRequest.from_settings(self.settings)
        return VerificationRequest.from_settings(self.settings, target_name=mode, allow_all=False)

    def resolve(self, path: str):
        if path == self.manager.path:
            return self.manager
        return self.manager.get_device(path)

    def call(self, path: str, method: str, *args: Any) -> Any:
        """Invoke a transport method on the object at ``path``.

        Raises:
            UnknownObject: if nothing lives at ``path``
            UnknownMethod: if the object has no such method
            SessionError: the method's own failure (Busy, PermissionDenied, ...)
        """
        target = self.resolve(path)
        attribute = target.METHODS.get(method)
        if attribute is None:
            raise UnknownMethod(f"{path} has no method {method}")

        try:
            return getattr(target, attribute)(*args)
        except FacePassError as e:
            logger.info(f"{method} on {path} failed: {getattr(e, 'error_name', type(e).__name__)}")
            raise

    def shutdown(self):
        """Cancel any run and stop the worker executor."""
        self.session.shutdown()
        logger.info("Face service stopped")
