# Services
from app.services.cache_service import CacheService, cache_service

__all__ = [
    "CacheService",
    "cache_service",
]
