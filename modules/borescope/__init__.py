"""Borescope inspection data store: records, fleet, attachments and transfer."""
from __future__ import annotations

from .services import BorescopeService

__all__ = ["BorescopeService"]
