"""
Storage Layer.

This package handles persistence of the INI configuration file.
"""

from .config_manager import ConfigManager, get_config_dir

__all__ = ["ConfigManager", "get_config_dir"]
