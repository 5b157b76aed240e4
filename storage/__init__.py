"""
Storage Module
Relational store, credential secret box and the in-process cache
"""
from .cache import BaseCache, MemoryCache
from .database import Database
from .models import Base
from .repository import BatchRepository
from .secret_box import SecretBox, decrypt, encrypt

__all__ = [
    "BaseCache",
    "MemoryCache",
    "Database",
    "Base",
    "BatchRepository",
    "SecretBox",
    "decrypt",
    "encrypt",
]
