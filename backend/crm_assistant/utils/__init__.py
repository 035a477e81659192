"""Utility modules for the CRM assistant."""

from .config import settings, Settings
from .logger import logger, setup_logger

__all__ = ["settings", "Settings", "logger", "setup_logger"]
