"""Configuration module."""

from voicedev.config.constants import LIMITS, SessionConstants
from voicedev.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings", "SessionConstants", "LIMITS"]
