"""Services for persistence, storage and the assistant."""

from classhub.config import get_settings
from classhub.db.session import AsyncSessionLocal
from classhub.realtime import broker
from classhub.services.assistant import assistant_service
from classhub.services.gateway import PersistenceGateway
from classhub.services.storage import media_storage

persistence_gateway = PersistenceGateway(
    AsyncSessionLocal,
    broker,
    media_storage,
    configured=get_settings().backend_configured,
)

__all__ = ["assistant_service", "media_storage", "persistence_gateway"]
