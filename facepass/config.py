"""Configuration loader and typed settings.

Values are read from YAML files and fall back to sensible defaults. Files are
merged in order, later files overriding earlier ones:

    /etc/facepass/config.yaml
    ~/.config/facepass/config.yaml
    ./config/config.yaml

A bad value never aborts startup: it is logged and the default is used.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATHS = [
    Path("/etc/facepass/config.yaml"),
    Path("~/.config/facepass/config.yaml"),
    Path("config/config.yaml"),
]

DEFAULT_THRESHOLD = 0.90


def _read_yaml(path: Path) -> Dict[str, Any]:
    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: top level must be a mapping")
    return data


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(
    config_path: Optional[Path] = None,
    search_paths: Optional[Iterable[Path]] = None,
) -> Dict[str, Any]:
    """Load configuration from YAML file(s).

    Args:
        config_path: Explicit config file. When given, only this file is read.
        search_paths: Files to merge when no explicit path is given.
            Defaults to DEFAULT_CONFIG_PATHS.

    Returns:
        Merged configuration dictionary (empty if nothing could be read).
    """
    if config_path is not None:
        paths = [Path(config_path)]
    else:
        paths = list(search_paths if search_paths is not None else DEFAULT_CONFIG_PATHS)

    config: Dict[str, Any] = {}
    for path in paths:
        path = path.expanduser()
        if not path.exists():
            if config_path is not None:
                logger.warning(f"Config file not found: {path}, using defaults")
            continue
        try:
            config = _merge(config, _read_yaml(path))
            logger.debug(f"Loaded config from {path}")
        except (OSError, yaml.YAMLError, ConfigError) as e:
            logger.warning(f"Failed to load config from {path}: {e}")

    return config


def _get_nested(config: Dict, *keys: str, default: Any = None) -> Any:
    """Get nested config value with default fallback."""
    value = config
    for key in keys:
        if isinstance(value, dict):
            value = value.get(key)
        else:
            return default
        if value is None:
            return default
    return value


def _section(config: Dict[str, Any], name: str) -> Dict[str, Any]:
    section = _get_nested(config, name) or {}
    if not isinstance(section, dict):
        logger.warning(f"Config section '{name}' is not a mapping, ignoring it")
        return {}
    return section


def _coerce(value: Any, cast: Callable[[Any], Any], check: Optional[Callable[[Any], bool]]) -> Any:
    try:
        result = cast(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"invalid value {value!r}: {e}") from e
    if check is not None and not check(result):
        raise ConfigError(f"value {value!r} out of range")
    return result


def _value(
    section: Dict[str, Any],
    key: str,
    default: Any,
    cast: Callable[[Any], Any],
    check: Optional[Callable[[Any], bool]] = None,
) -> Any:
    """Read one setting, substituting the default on any ConfigError."""
    if section.get(key) is None:
        return default
    try:
        return _coerce(section[key], cast, check)
    except ConfigError as e:
        logger.warning(f"Config '{key}': {e}; using default {default!r}")
        return default


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    lowered = str(value).strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ValueError("expected a boolean")


def _as_pair(value: Any) -> Tuple[int, int]:
    if not isinstance(value, (list, tuple)) or len(value) != 2:
        raise ValueError("expected [width, height]")
    return (int(value[0]), int(value[1]))


def _as_triple(value: Any) -> Tuple[float, float, float]:
    if not isinstance(value, (list, tuple)) or len(value) != 3:
        raise ValueError("expected three numbers")
    return tuple(float(v) for v in value)


def _as_path(value: Any) -> Path:
    return Path(os.path.expanduser(str(value)))


def _positive(value: float) -> bool:
    return value > 0


def _non_negative(value: float) -> bool:
    return value >= 0


# ============================================================
# Model
# ============================================================

@dataclass
class ModelConfig:
    """Embedding model settings."""
    path: Path = Path("/usr/share/facepass/model.onnx")
    # Network input (width, height)
    input_size: Tuple[int, int] = (224, 224)
    # ImageNet normalisation, RGB order
    mean: Tuple[float, float, float] = (0.485, 0.456, 0.406)
    std: Tuple[float, float, float] = (0.229, 0.224, 0.225)

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "ModelConfig":
        """Create from config dictionary."""
        m = _section(config, "model")
        return cls(
            path=_value(m, "path", cls.path, _as_path),
            input_size=_value(m, "input_size", cls.input_size, _as_pair,
                              lambda v: v[0] > 0 and v[1] > 0),
            mean=_value(m, "mean", cls.mean, _as_triple),
            std=_value(m, "std", cls.std, _as_triple,
                       lambda v: all(s > 0 for s in v)),
        )


# ============================================================
# Storage
# ============================================================

@dataclass
class StorageConfig:
    """Embedding store settings."""
    path: Path = field(default_factory=lambda: Path("~/.local/share/facepass").expanduser())

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "StorageConfig":
        """Create from config dictionary."""
        s = _section(config, "storage")
        default = cls().path
        return cls(path=_value(s, "path", default, _as_path))


# ============================================================
# Camera and capture
# ============================================================

@dataclass
class CameraConfig:
    """Camera device settings."""
    device: str = "/dev/video0"
    width: int = 640
    height: int = 480
    fps: int = 30

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "CameraConfig":
        """Create from config dictionary."""
        c = _section(config, "camera")
        return cls(
            device=_value(c, "device", cls.device, str),
            width=_value(c, "width", cls.width, int, _positive),
            height=_value(c, "height", cls.height, int, _positive),
            fps=_value(c, "fps", cls.fps, int, _positive),
        )


@dataclass
class CaptureConfig:
    """Capture loop timing and reconnection settings."""
    # Seconds of frames discarded while auto-exposure settles
    warmup_delay: float = 1.0
    # Frames discarded instead when warmup_delay is zero
    warmup_frames: int = 5
    # Accumulation window in seconds (<= 0 means a single good frame)
    capture_duration: float = 2.0
    frame_interval: float = 0.1
    # Consecutive failed reads tolerated before reopening the device
    max_read_failures: int = 3
    max_reconnect_attempts: int = 3
    reconnect_delay: float = 0.5

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "CaptureConfig":
        """Create from config dictionary."""
        c = _section(config, "capture")
        return cls(
            warmup_delay=_value(c, "warmup_delay", cls.warmup_delay, float, _non_negative),
            warmup_frames=_value(c, "warmup_frames", cls.warmup_frames, int, _non_negative),
            capture_duration=_value(c, "capture_duration", cls.capture_duration, float),
            frame_interval=_value(c, "frame_interval", cls.frame_interval, float, _non_negative),
            max_read_failures=_value(c, "max_read_failures", cls.max_read_failures, int, _non_negative),
            max_reconnect_attempts=_value(
                c, "max_reconnect_attempts", cls.max_reconnect_attempts, int, _non_negative
            ),
            reconnect_delay=_value(c, "reconnect_delay", cls.reconnect_delay, float, _non_negative),
        )


# ============================================================
# Detection
# ============================================================

@dataclass
class DetectionConfig:
    """Haar cascade detector settings."""
    cascade_path: Optional[Path] = None
    scale_factor: float = 1.1
    min_neighbors: int = 3
    min_size: Tuple[int, int] = (30, 30)
    # Margin added around the detected face as a fraction of its size
    padding: float = 0.2

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "DetectionConfig":
        """Create from config dictionary."""
        d = _section(config, "detection")
        return cls(
            cascade_path=_value(d, "cascade_path", None, _as_path),
            scale_factor=_value(d, "scale_factor", cls.scale_factor, float, lambda v: v > 1.0),
            min_neighbors=_value(d, "min_neighbors", cls.min_neighbors, int, _non_negative),
            min_size=_value(d, "min_size", cls.min_size, _as_pair),
            padding=_value(d, "padding", cls.padding, float, _non_negative),
        )


# ============================================================
# Verification and service
# ============================================================

@dataclass
class VerificationConfig:
    """Defaults for verification requests."""
    threshold: float = DEFAULT_THRESHOLD
    profile: str = "default"
    allow_all: bool = False

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "VerificationConfig":
        """Create from config dictionary."""
        v = _section(config, "verification")
        return cls(
            threshold=_value(v, "threshold", cls.threshold, float, valid_threshold),
            profile=_value(v, "profile", cls.profile, str),
            allow_all=_value(v, "allow_all", cls.allow_all, _as_bool),
        )


@dataclass
class ServiceConfig:
    """Session service transport settings."""
    host: str = "127.0.0.1"
    port: int = 8765

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "ServiceConfig":
        """Create from config dictionary."""
        s = _section(config, "service")
        return cls(
            host=_value(s, "host", cls.host, str),
            port=_value(s, "port", cls.port, int, lambda v: 0 < v < 65536),
        )


def valid_threshold(value: float) -> bool:
    """Similarity thresholds live in (0, 1]."""
    return 0.0 < value <= 1.0


@dataclass
class Settings:
    """All facepass settings."""
    model: ModelConfig = field(default_factory=ModelConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    camera: CameraConfig = field(default_factory=CameraConfig)
    capture: CaptureConfig = field(default_factory=CaptureConfig)
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    verification: VerificationConfig = field(default_factory=VerificationConfig)
    service: ServiceConfig = field(default_factory=ServiceConfig)

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "Settings":
        """Create from config dictionary."""
        return cls(
            model=ModelConfig.from_config(config),
            storage=StorageConfig.from_config(config),
            camera=CameraConfig.from_config(config),
            capture=CaptureConfig.from_config(config),
            detection=DetectionConfig.from_config(config),
            verification=VerificationConfig.from_config(config),
            service=ServiceConfig.from_config(config),
        )

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "Settings":
        """Load settings from the standard locations or an explicit file."""
        return cls.from_config(load_config(config_path))
