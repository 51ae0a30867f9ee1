"""HTTP transport for the session service.

Start with: facepass serve --port 8765

Endpoints:
    GET  /api/v1/health                          - Health check
    GET  /api/v1/manager/default-device          - Default device object path
    GET  /api/v1/devices                         - Devices and their state
    POST /api/v1/devices/{id}/claim              - Claim a device
    POST /api/v1/devices/{id}/release            - Release a device
    POST /api/v1/devices/{id}/verify-start       - Start verification
    POST /api/v1/devices/{id}/verify-stop        - Stop verification
    GET  /api/v1/devices/{id}/events?after=N     - Status notifications after N
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .. import __version__
from ..errors import (
    AlreadyInProgress,
    PermissionDenied,
    SessionBusy,
    SessionError,
    UnknownMethod,
    UnknownObject,
)
from .bus import MODE_ANY, FaceService

logger = logging.getLogger(__name__)

ERROR_STATUS_CODES = {
    SessionBusy: 409,
    AlreadyInProgress: 409,
    PermissionDenied: 403,
    UnknownObject: 404,
    UnknownMethod: 404,
}

# Longest an events request may block waiting for a new notification
MAX_EVENT_WAIT = 30.0


# =============================================================================
# Pydantic Schemas
# =============================================================================

class HealthResponse(BaseModel):
    status: str
    version: str
    detector_available: bool
    default_device: str


class DeviceResponse(BaseModel):
    id: str
    path: str
    state: str


class DefaultDeviceResponse(BaseModel):
    path: str


class VerifyStartRequest(BaseModel):
    mode: str = MODE_ANY


class MethodResponse(BaseModel):
    device: str
    method: str
    state: str


class SignalResponse(BaseModel):
    sequence: int
    path: str
    name: str
    args: list
    timestamp: str


class EventsResponse(BaseModel):
    events: List[SignalResponse]
    last_sequence: int


# =============================================================================
# API Routes
# =============================================================================

def create_app(service: FaceService) -> FastAPI:
    """Create the FastAPI application around an existing service."""
    app = FastAPI(
        title="facepass session service",
        description="Claim / verify face verification devices",
        version=__version__,
    )
    app.state.service = service

    @app.exception_handler(SessionError)
    async def session_error_handler(request: Request, exc: SessionError):
        status_code = ERROR_STATUS_CODES.get(type(exc), 400)
        return JSONResponse(
            status_code=status_code,
            content={"error": exc.error_name, "detail": str(exc)},
        )

    router = APIRouter(prefix="/api/v1", tags=["session"])

    def invoke(device_id: str, method: str, *args) -> MethodResponse:
        device = service.manager.get_device(device_id)
        service.call(device.path, method, *args)
        return MethodResponse(device=device.path, method=method, state=device.state.value)

    @router.get("/health", response_model=HealthResponse)
    async def health_check():
        """Health check endpoint."""
        return HealthResponse(
            status="healthy",
            version=__version__,
            detector_available=service.detector.available,
            default_device=service.manager.get_default_device(),
        )

    @router.get("/manager/default-device", response_model=DefaultDeviceResponse)
    async def get_default_device():
        path = service.call(service.manager.path, "GetDefaultDevice")
        return DefaultDeviceResponse(path=path)

    @router.get("/devices", response_model=List[DeviceResponse])
    async def list_devices():
        return [DeviceResponse(**device.to_dict()) for device in service.manager.devices]

    # Claim/verify handlers are plain functions: release and verify-stop
    # block until the worker exits, so they run in the threadpool.

    @router.post("/devices/{device_id}/claim", response_model=MethodResponse)
    def claim(device_id: str):
        return invoke(device_id, "Claim")

    @router.post("/devices/{device_id}/release", response_model=MethodResponse)
    def release(device_id: str):
        return invoke(device_id, "Release")

    @router.post("/devices/{device_id}/verify-start", response_model=MethodResponse)
    def verify_start(device_id: str, body: Optional[VerifyStartRequest] = None):
        mode = body.mode if body is not None else MODE_ANY
        return invoke(device_id, "VerifyStart", mode)

    @router.post("/devices/{device_id}/verify-stop", response_model=MethodResponse)
    def verify_stop(device_id: str):
        return invoke(device_id, "VerifyStop")

    @router.get("/devices/{device_id}/events", response_model=EventsResponse)
    def device_events(
        device_id: str,
        after: int = Query(0, ge=0),
        timeout: float = Query(0.0, ge=0.0, le=MAX_EVENT_WAIT),
    ):
        """Notifications for a device with a sequence number above ``after``."""
        device = service.manager.get_device(device_id)
        signals = service.signals.wait(after, path=device.path, timeout=timeout)
        return EventsResponse(
            events=[SignalResponse(**s.to_dict()) for s in signals],
            last_sequence=service.signals.last_sequence,
        )

    app.include_router(router)

    @app.get("/")
    async def root():
        return {
            "name": "facepass",
            "version": __version__,
            "docs": "/docs",
        }

    return app
