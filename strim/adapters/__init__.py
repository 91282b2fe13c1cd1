"""Upstream provider adapters."""

from strim.adapters.base import SourceAdapter
from strim.adapters.dramabox import DramaBoxAdapter
from strim.adapters.dramadash import DramaDashAdapter
from strim.adapters.registry import AdapterRegistry, UnsupportedSourceError

__all__ = [
    "AdapterRegistry",
    "DramaBoxAdapter",
    "DramaDashAdapter",
    "SourceAdapter",
    "UnsupportedSourceError",
]
