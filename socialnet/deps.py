"""
Dependency providers for external collaborators.

Routes receive these through ``Depends`` so tests can swap them with
``app.dependency_overrides``.
"""
from functools import lru_cache

from fastapi import Depends
from sqlalchemy.orm import Session

from .config import get_settings
from .database import get_db
from .services.feed import FeedComposer
from .services.geolocation import GeoLocator
from .services.notifications import NotificationService
from .services.push import HttpPushGateway, PushGateway
from .services.rtc import RtcTokenService
from .services.storage import LocalMediaStorage


@lru_cache()
def get_push_gateway() -> PushGateway:
    return HttpPushGateway(get_settings())


@lru_cache()
def get_geolocator() -> GeoLocator:
    return GeoLocator(get_settings())


@lru_cache()
def get_media_storage() -> LocalMediaStorage:
    return LocalMediaStorage(get_settings())


@lru_cache()
def get_rtc_service() -> RtcTokenService:
    return RtcTokenService(get_settings())


def get_notification_service(
    db: Session = Depends(get_db),
    gateway: PushGateway = Depends(get_push_gateway),
) -> NotificationService:
    return NotificationService(db, gateway, get_settings())


def get_feed_composer(db: Session = Depends(get_db)) -> FeedComposer:
    return FeedComposer(db, get_settings())
