"""Exception types raised by the mirror services."""

from __future__ import annotations


class MirrorError(Exception):
    """Base class for errors raised by the media mirror."""


class JellyfinAPIError(MirrorError):
    """The remote server could not satisfy a request."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ItemMappingError(MirrorError):
    """A remote item payload is missing data required to store it."""

    def __init__(self, item_id: str | None, message: str):
        super().__init__(f"Item {item_id or '<unknown>'}: {message}")
        self.item_id = item_id


class IdentityMigrationError(MirrorError):
    """Re-keying an item to a new remote id failed and was rolled back."""

    def __init__(self, old_id: str, new_id: str, cause: BaseException):
        super().__init__(f"Failed to migrate item {old_id} -> {new_id}: {cause}")
        self.old_id = old_id
        self.new_id = new_id


class HistoricalSessionError(MirrorError):
    """The historical session backfill could not run to completion."""
