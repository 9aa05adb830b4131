"""
IP geolocation lookup against an ip-api.com compatible endpoint.
"""
import ipaddress
from typing import Dict, Optional

import requests

from ..config import Settings
from ..logging_config import get_logger

logger = get_logger("geolocation")

LOCAL_LOCATION = {
    "country": "Local",
    "country_code": "LO",
    "region": "Local",
    "city": "Local",
    "latitude": None,
    "longitude": None,
    "timezone": None,
    "isp": "Local Network",
}


def is_local_address(ip: Optional[str]) -> bool:
    if not ip:
        return True
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        return True
    return address.is_private or address.is_loopback or address.is_link_local or address.is_unspecified


class GeoLocator:
    """Resolves an IP address to a coarse location snapshot."""

    def __init__(self, settings: Settings):
        self.enabled = settings.geo_lookup_enabled
        self.base_url = settings.geo_lookup_url.rstrip("/")
        self.timeout = settings.geo_timeout_seconds

    def lookup(self, ip: Optional[str]) -> Optional[Dict]:
        """Return a location dict, a local placeholder, or None on failure."""
        if is_local_address(ip):
            return dict(LOCAL_LOCATION)
        if not self.enabled:
            return None

        try:
            response = requests.get(f"{self.base_url}/{ip}", timeout=self.timeout)
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning("Geolocation lookup failed", ip=ip, error_message=str(e))
            return None

        if payload.get("status") != "success":
            logger.warning("Geolocation lookup rejected", ip=ip, reason=payload.get("message"))
            return None

        return {
            "country": payload.get("country"),
            "country_code": payload.get("countryCode"),
            "region": payload.get("regionName"),
            "city": payload.get("city"),
            "latitude": payload.get("lat"),
            "longitude": payload.get("lon"),
            "timezone": payload.get("timezone"),
            "isp": payload.get("isp"),
        }
