from .database import SessionFactory, async_session_maker
from .services.illustrations import LocalIllustrationStorage, storage_from_settings
from .services.providers import ImageProvider, build_provider_from_settings

STORAGE = storage_from_settings()


def get_storage() -> LocalIllustrationStorage:
    return STORAGE


def get_provider() -> ImageProvider:
    return build_provider_from_settings()


def get_session_factory() -> SessionFactory:
    return async_session_maker


__all__ = ["STORAGE", "get_storage", "get_provider", "get_session_factory"]
