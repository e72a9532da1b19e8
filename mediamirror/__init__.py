"""Media server catalog and viewing-history mirror."""

from __future__ import annotations

from importlib import import_module
from typing import Any

_EXPORTS = {
    "Settings": "mediamirror.config",
    "get_settings": "mediamirror.config",
    "Database": "mediamirror.database",
    "JellyfinClient": "mediamirror.services.jellyfin",
    "ItemSyncService": "mediamirror.services.item_sync",
    "ActivitySyncService": "mediamirror.services.activity_sync",
    "HistoricalSessionJob": "mediamirror.services.historical",
}

__all__ = list(_EXPORTS)


def __getattr__(name: str) -> Any:
    module_name = _EXPORTS.get(name)
    if module_name is not None:
        module = import_module(module_name)
        return getattr(module, name)
    raise AttributeError(f"module 'mediamirror' has no attribute {name}")
