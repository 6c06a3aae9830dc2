"""Skillstash - configuration, policy resolution and validation for agent skill repositories."""

__version__ = "0.1.0"

from skillstash.config import StashConfig, load_config

__all__ = ["StashConfig", "load_config", "__version__"]
