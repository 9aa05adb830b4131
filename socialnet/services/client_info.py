"""
Client IP and device details derived from request headers.
"""
import re
from dataclasses import dataclass
from typing import Dict, Optional

from fastapi import Request

PROXY_HEADERS = ("x-real-ip", "cf-connecting-ip", "true-client-ip")


def get_client_ip(request: Request) -> Optional[str]:
    """Best-effort client IP; proxy headers win over the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    for header in PROXY_HEADERS:
        value = request.headers.get(header)
        if value:
            return value.strip()

    if request.client:
        return request.client.host
    return None


_OS_PATTERNS = (
    ("Android", re.compile(r"Android[ /]?([\d.]+)?")),
    ("iOS", re.compile(r"(?:iPhone|iPad|iPod).*?OS ([\d_]+)")),
    ("Windows", re.compile(r"Windows NT ([\d.]+)")),
    ("macOS", re.compile(r"Mac OS X ([\d_.]+)")),
    ("Linux", re.compile(r"Linux()")),
)

_BROWSER_PATTERNS = (
    ("Edge", re.compile(r"Edg(?:e|A|iOS)?/([\d.]+)")),
    ("Chrome", re.compile(r"(?:Chrome|CriOS)/([\d.]+)")),
    ("Firefox", re.compile(r"(?:Firefox|FxiOS)/([\d.]+)")),
    ("Safari", re.compile(r"Version/([\d.]+).*Safari")),
    ("Dart", re.compile(r"Dart/([\d.]+)")),
    ("okhttp", re.compile(r"okhttp/([\d.]+)")),
)


def get_device_info(user_agent: Optional[str]) -> Dict:
    """Summarize a User-Agent string into type, os and browser fields."""
    ua = user_agent or ""
    info = {
        "type": "unknown",
        "os": None,
        "os_version": None,
        "browser": None,
        "browser_version": None,
        "user_agent": ua[:500],
    }
    if not ua:
        return info

    for name, pattern in _OS_PATTERNS:
        match = pattern.search(ua)
        if match:
            info["os"] = name
            version = match.group(1) if match.groups() else None
            info["os_version"] = version.replace("_", ".") if version else None
            break

    for name, pattern in _BROWSER_PATTERNS:
        match = pattern.search(ua)
        if match:
            info["browser"] = name
            info["browser_version"] = match.group(1)
            break

    lowered = ua.lower()
    if "ipad" in lowered or "tablet" in lowered:
        info["type"] = "tablet"
    elif "mobi" in lowered or info["os"] in ("Android", "iOS") or "okhttp" in lowered or "dart" in lowered:
        info["type"] = "mobile"
    elif info["os"] in ("Windows", "macOS", "Linux"):
        info["type"] = "desktop"

    return info


@dataclass
class ClientSnapshot:
    ip: Optional[str] = None
    device: Optional[dict] = None
    location: Optional[dict] = None
    user_agent: Optional[str] = None


def snapshot_request(request: Request, geolocator) -> ClientSnapshot:
    """Collect IP, device and location for the client behind ``request``."""
    ip = get_client_ip(request)
    user_agent = request.headers.get("user-agent")
    return ClientSnapshot(
        ip=ip,
        device=get_device_info(user_agent),
        location=geolocator.lookup(ip),
        user_agent=user_agent,
    )
