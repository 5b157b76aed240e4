"""
Source Adapters Module
"""
from .base import SourceAdapter
from .cookie_site import CookieSiteAdapter
from .manifest_list import ManifestListAdapter
from .registry import AdapterRegistry, build_default_registry

__all__ = [
    "SourceAdapter",
    "CookieSiteAdapter",
    "ManifestListAdapter",
    "AdapterRegistry",
    "build_default_registry",
]
