"""Persistence of flow runs."""

from .manager import RunLedger

__all__ = ["RunLedger"]
