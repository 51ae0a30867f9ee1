"""Session service.

Contains:
- Manager / Device objects and the signal log
- FaceService: explicitly constructed verification stack
- create_app: FastAPI transport
"""

from .bus import (
    DEVICE_PATH,
    MANAGER_PATH,
    SERVICE_NAME,
    Device,
    FaceService,
    Manager,
    Signal,
    SignalLog,
)

__all__ = [
    "DEVICE_PATH",
    "MANAGER_PATH",
    "SERVICE_NAME",
    "Device",
    "FaceService",
    "Manager",
    "Signal",
    "SignalLog",
]
