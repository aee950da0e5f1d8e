"""Control routes: session lifecycle, audio capture and health."""

from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from ..core.orchestrator import Orchestrator
from ..errors import AlreadyCapturingError, InvalidSessionStateError, TranscribeError
from .schemas import AudioResponse, DeviceListResponse, DeviceModel, ErrorResponse, SessionResponse

logger = logging.getLogger("ApiRouter")

router = APIRouter()


def get_orchestrator(request: Request) -> Orchestrator:
    return request.app.state.orchestrator


def _error(status_code: int, error: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(error=str(error)).model_dump())


@router.get("/health")
def health(orchestrator: Orchestrator = Depends(get_orchestrator)) -> Dict[str, Any]:
    logger.debug("Health check requested")
    return orchestrator.get_health()


@router.post("/start", response_model=SessionResponse, responses={409: {"model": ErrorResponse}, 503: {"model": ErrorResponse}})
def start_session(orchestrator: Orchestrator = Depends(get_orchestrator)):
    try:
        orchestrator.start_session()
    except (InvalidSessionStateError, AlreadyCapturingError) as e:
        return _error(409, e)
    except TranscribeError as e:
        return _error(503, e)
    return SessionResponse(status="started", state=orchestrator.state.value)


@router.post("/stop", response_model=SessionResponse)
def stop_session(orchestrator: Orchestrator = Depends(get_orchestrator)):
    stopped = orchestrator.stop_session()
    return SessionResponse(status="stopped" if stopped else "already_stopped", state=orchestrator.state.value)


@router.get("/audio/devices", response_model=DeviceListResponse)
def list_devices(orchestrator: Orchestrator = Depends(get_orchestrator)):
    devices = orchestrator.list_devices()
    return DeviceListResponse(devices=[DeviceModel(id=d.id, name=d.name, state=d.state) for d in devices])


@router.post("/audio/start", response_model=AudioResponse, responses={409: {"model": ErrorResponse}, 503: {"model": ErrorResponse}})
def start_audio(orchestrator: Orchestrator = Depends(get_orchestrator)):
    try:
        orchestrator.start_audio()
    except AlreadyCapturingError as e:
        return _error(409, e)
    except TranscribeError as e:
        return _error(503, e)
    return AudioResponse(status="started", is_capturing=orchestrator.capture.is_capturing)


@router.post("/audio/stop", response_model=AudioResponse)
def stop_audio(orchestrator: Orchestrator = Depends(get_orchestrator)):
    orchestrator.stop_audio()
    return AudioResponse(status="stopped", is_capturing=orchestrator.capture.is_capturing)
