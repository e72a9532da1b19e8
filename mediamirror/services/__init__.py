"""Sync services for the media mirror."""
