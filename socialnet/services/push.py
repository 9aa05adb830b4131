"""
Push gateway transport.

The gateway accepts a multicast message for a list of device tokens and
answers with one result per token, in the order the tokens were sent.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import requests

from ..config import Settings
from ..logging_config import push_logger

ANDROID_PRIORITY = {
    "low": "min",
    "medium": "default",
    "high": "high",
    "urgent": "max",
}


@dataclass
class PushMessage:
    title: str
    body: str
    data: Dict[str, str] = field(default_factory=dict)
    priority: str = "medium"
    image_url: Optional[str] = None

    def to_payload(self, tokens: List[str]) -> dict:
        notification = {"title": self.title, "body": self.body}
        if self.image_url:
            notification["image"] = self.image_url
        android_priority = ANDROID_PRIORITY.get(self.priority, "default")
        return {
            "tokens": tokens,
            "notification": notification,
            # Gateways only accept string values in the data map
            "data": {k: str(v) for k, v in self.data.items()},
            "android": {
                "priority": "high" if self.priority in ("high", "urgent") else "normal",
                "notification": {
                    "channel_id": "default",
                    "priority": android_priority,
                    "sound": "default",
                },
            },
            "apns": {"payload": {"aps": {"sound": "default", "badge": 1}}},
        }


@dataclass
class TokenResult:
    token: str
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class MulticastResult:
    responses: List[TokenResult]

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.responses if r.success)

    @property
    def failure_count(self) -> int:
        return sum(1 for r in self.responses if not r.success)

    @classmethod
    def all_failed(cls, tokens: List[str], error: str) -> "MulticastResult":
        return cls([TokenResult(token=t, success=False, error=error) for t in tokens])

    def to_dict(self) -> dict:
        return {
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "responses": [
                {"success": r.success, "message_id": r.message_id, "error": r.error}
                for r in self.responses
            ],
        }


class PushGateway:
    """Interface for multicast push delivery."""

    def send_multicast(self, tokens: List[str], message: PushMessage) -> MulticastResult:
        raise NotImplementedError


class HttpPushGateway(PushGateway):
    """Posts multicast messages to an HTTP push gateway."""

    def __init__(self, settings: Settings):
        self.url = settings.push_gateway_url
        self.key = settings.push_gateway_key
        self.timeout = settings.push_timeout_seconds

    def send_multicast(self, tokens: List[str], message: PushMessage) -> MulticastResult:
        if not tokens:
            return MulticastResult([])
        if not self.url:
            push_logger.warning("Push gateway not configured", token_count=len(tokens))
            return MulticastResult.all_failed(tokens, "push gateway not configured")

        headers = {"Content-Type": "application/json"}
        if self.key:
            headers["Authorization"] = f"key={self.key}"

        try:
            response = requests.post(
                self.url,
                json=message.to_payload(tokens),
                headers=headers,
                timeout=self.timeout,
            )
            response.raise_for_status()
            body = response.json()
        except (requests.RequestException, ValueError) as e:
            push_logger.error("Push gateway request failed", error=e, token_count=len(tokens))
            return MulticastResult.all_failed(tokens, str(e))

        raw = body.get("responses") or []
        results = []
        for index, token in enumerate(tokens):
            item = raw[index] if index < len(raw) else {"success": False, "error": "missing response"}
            results.append(TokenResult(
                token=token,
                success=bool(item.get("success")),
                message_id=item.get("message_id") or item.get("messageId"),
                error=item.get("error"),
            ))

        result = MulticastResult(results)
        push_logger.info(
            "Multicast sent",
            success_count=result.success_count,
            failure_count=result.failure_count,
        )
        return result
