from pydantic import BaseModel, Field
from typing import Any, Dict, Optional


class SessionStart(BaseModel):
    device: Dict[str, Any] = {}
    location: Optional[Dict[str, Any]] = None
    fcm_token: Optional[str] = None
    language: Optional[str] = Field(None, max_length=16)
    referrer: Optional[str] = Field(None, max_length=255)
    device_state: Optional[Dict[str, Any]] = None


class ScreenEnter(BaseModel):
    session_id: int
    screen_name: str = Field(..., min_length=1, max_length=100)
    screen_route: Optional[str] = None
    screen_title: Optional[str] = None
    previous_screen: Optional[str] = None
    navigation_method: Optional[str] = "push"
    load_time: Optional[int] = Field(None, ge=0)
    device_state: Optional[Dict[str, Any]] = None
    location: Optional[Dict[str, Any]] = None
    referrer: Optional[str] = None
    metadata: Dict[str, Any] = {}


class ScreenActionIn(BaseModel):
    action_type: str = Field(..., min_length=1, max_length=50)
    action_target: Optional[str] = None
    metadata: Dict[str, Any] = {}


class ScreenErrorIn(BaseModel):
    error_type: str
    error_message: Optional[str] = None


class ActivityUpdate(BaseModel):
    scroll_depth: Optional[int] = Field(None, ge=0, le=100)
    action: Optional[ScreenActionIn] = None
    api_calls: Optional[int] = Field(None, ge=0)
    error: Optional[ScreenErrorIn] = None


class SessionRef(BaseModel):
    session_id: int


class Heartbeat(SessionRef):
    idle: bool = False
