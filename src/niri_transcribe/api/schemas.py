"""Response schemas for the control surface."""

from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    error: str


class SessionResponse(BaseModel):
    status: str
    state: str


class AudioResponse(BaseModel):
    status: str
    is_capturing: bool


class DeviceModel(BaseModel):
    id: str
    name: str
    state: str = "available"


class DeviceListResponse(BaseModel):
    devices: List[DeviceModel] = Field(default_factory=list)
