"""
Giganto - control plane of the giganto data-ingestion service

Typed configuration, format-preserving config file edits, remote
reconfiguration and lifecycle control over an administrative API.
"""

__version__ = "0.22.1"

from giganto.core import ConfigError, Configuration, Settings

__all__ = [
    "ConfigError",
    "Configuration",
    "Settings",
]
