"""Push notification models"""
from pydantic import BaseModel
from typing import Any, Dict, Optional

DEVICE_NOT_REGISTERED = "DeviceNotRegistered"


class PushToken(BaseModel):
    """A device token registered for a user"""
    token: str
    platform: str = "ios"


class PushPayload(BaseModel):
    """One message addressed to one device token"""
    to: str
    title: str
    body: str
    data: Dict[str, Any] = {}
    sound: Optional[str] = "default"
    priority: str = "high"
    badge: Optional[int] = None
    channel_id: Optional[str] = None

    def to_expo(self) -> Dict[str, Any]:
        message = {
            "to": self.to,
            "title": self.title,
            "body": self.body,
            "data": self.data,
            "sound": self.sound,
            "priority": self.priority,
        }
        if self.badge is not None:
            message["badge"] = self.badge
        if self.channel_id:
            message["channelId"] = self.channel_id
        return message


class PushResult(BaseModel):
    """Delivery outcome for one payload"""
    status: str  # ok, error
    id: Optional[str] = None
    message: Optional[str] = None
    failure_reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def device_not_registered(self) -> bool:
        return self.failure_reason == DEVICE_NOT_REGISTERED
