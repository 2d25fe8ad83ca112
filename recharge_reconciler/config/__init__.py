"""Configuration package for recharge reconciliation."""
from .settings import Runtime, Settings, get_settings

__all__ = ["Runtime", "Settings", "get_settings"]
