"""
Time-limited per-channel tokens for the real-time voice service.
"""
import re
from datetime import datetime, timedelta, timezone

from jose import jwt

from ..config import Settings

CHANNEL_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_]{1,64}$")

ROLE_PUBLISHER = "publisher"
ROLE_SUBSCRIBER = "subscriber"


class RtcConfigurationError(Exception):
    pass


def validate_channel_name(channel_name: str) -> bool:
    return bool(channel_name) and CHANNEL_NAME_PATTERN.match(channel_name) is not None


class RtcTokenService:
    """Issues signed channel-join tokens."""

    def __init__(self, settings: Settings):
        self.app_id = settings.rtc_app_id
        self.certificate = settings.rtc_app_certificate
        self.ttl_seconds = settings.rtc_token_ttl_seconds
        self.algorithm = settings.algorithm

    def generate_token(self, channel_name: str, uid: int, role: str = ROLE_PUBLISHER) -> dict:
        if not self.certificate:
            raise RtcConfigurationError("Voice call credentials are not configured")
        if not validate_channel_name(channel_name):
            raise ValueError("Invalid channel name")

        expires_at = datetime.now(timezone.utc) + timedelta(seconds=self.ttl_seconds)
        token = jwt.encode(
            {
                "app_id": self.app_id,
                "channel": channel_name,
                "uid": uid,
                "role": role,
                "exp": expires_at,
            },
            self.certificate,
            algorithm=self.algorithm,
        )
        return {
            "token": token,
            "channel_name": channel_name,
            "uid": uid,
            "app_id": self.app_id,
            "expires_at": expires_at.isoformat(),
        }

    def decode_token(self, token: str) -> dict:
        return jwt.decode(token, self.certificate, algorithms=[self.algorithm])
