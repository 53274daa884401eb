"""
Utility modules for collabhub
"""

from .logger_setup import setup_logging  # noqa: F401
from .config_manager import get_config, ConfigurationManager, SystemConfiguration  # noqa: F401

__all__ = [
    "setup_logging",
    "get_config",
    "ConfigurationManager",
    "SystemConfiguration",
]
