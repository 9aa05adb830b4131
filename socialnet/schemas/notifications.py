from datetime import datetime
from pydantic import BaseModel, Field
from typing import Dict, List, Literal, Optional

NotificationType = Literal["general", "post", "comment", "like", "follow", "call", "admin", "system"]
Priority = Literal["low", "medium", "high", "urgent"]


class TokenRegister(BaseModel):
    token: str = Field(..., min_length=1, max_length=512)
    device_type: Literal["android", "ios", "web"]
    device_id: Optional[str] = None
    device_name: Optional[str] = None
    device_model: Optional[str] = None
    os_version: Optional[str] = None
    app_version: Optional[str] = None


class TokenDeactivate(BaseModel):
    token: str


class NotificationAction(BaseModel):
    label: str = Field(..., max_length=30)
    action: str
    data: Dict[str, str] = {}


class NotificationContent(BaseModel):
    title: str = Field(..., min_length=1, max_length=100)
    body: str = Field(..., min_length=1, max_length=500)
    type: NotificationType = "general"
    priority: Priority = "medium"
    data: Dict[str, str] = {}
    image_url: Optional[str] = None
    actions: List[NotificationAction] = []
    expires_at: Optional[datetime] = None


class SendToUser(NotificationContent):
    user_id: int


class SendToUsers(NotificationContent):
    user_ids: List[int] = Field(..., min_length=1)


class Broadcast(NotificationContent):
    type: NotificationType = "system"
    priority: Priority = "high"


class SendToRole(NotificationContent):
    role: Literal["USER", "ADMIN"]


class ScheduleNotification(NotificationContent):
    user_id: int
    scheduled_for: datetime
