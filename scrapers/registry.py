"""Explicit source adapter registry, built once at startup and passed to consumers."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

import httpx

from core import AdapterValidation
from utils.exceptions import UnsupportedSourceError

from .base import SourceAdapter
from .cookie_site import CookieSiteAdapter
from .manifest_list import ManifestListAdapter


logger = logging.getLogger(__name__)


class AdapterRegistry:
    """Maps a program's ``source_type`` to its adapter."""

    def __init__(self, adapters: Iterable[SourceAdapter] = ()):
        self._adapters: Dict[str, SourceAdapter] = {}
        for adapter in adapters:
            self.register(adapter)

    def register(self, adapter: SourceAdapter) -> None:
        key = adapter.source_type
        if key in self._adapters:
            logger.warning("Replacing adapter for source type %s", key)
        self._adapters[key] = adapter

    def get(self, source_type: str) -> SourceAdapter:
        key = str(getattr(source_type, "value", source_type) or "")
        adapter = self._adapters.get(key)
        if adapter is None:
            raise UnsupportedSourceError(f"Unknown source type: {key}", source=key)
        return adapter

    def has(self, source_type: str) -> bool:
        return str(getattr(source_type, "value", source_type) or "") in self._adapters

    def source_types(self) -> List[str]:
        return sorted(self._adapters)

    def detect(self, url: str) -> Optional[str]:
        """First registered source type whose adapter accepts ``url``."""
        for key, adapter in self._adapters.items():
            if adapter.validate(url).ok:
                return key
        return None

    def validate(self, source_type: str, url: str) -> AdapterValidation:
        if not self.has(source_type):
            return AdapterValidation(ok=False, reason=f"Unknown source type: {source_type}")
        return self.get(source_type).validate(url)

    async def aclose(self) -> None:
        for adapter in self._adapters.values():
            await adapter.close()


def build_default_registry(scraper_settings=None, transport: Optional[httpx.AsyncBaseTransport] = None) -> AdapterRegistry:
    """Registry with the cookie-site scraper and the manifest list adapter."""
    kwargs = {"transport": transport}
    cookie_kwargs = {}
    if scraper_settings is not None:
        kwargs.update(timeout=scraper_settings.request_timeout, user_agent=scraper_settings.user_agent)
        cookie_kwargs = {
            "allowed_hosts": scraper_settings.allowed_hosts,
            "min_content_chars": scraper_settings.min_content_chars,
            "max_title_chars": scraper_settings.max_title_chars,
        }
    return AdapterRegistry(
        [
            CookieSiteAdapter(**cookie_kwargs, **kwargs),
            ManifestListAdapter(**kwargs),
        ]
    )
