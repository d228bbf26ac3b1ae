"""
Core of the giganto control plane.

This package exposes the typed configuration, the format-preserving document
helpers, the reconfiguration coordinator, the lifecycle signals and the
supervisor that consumes them.
"""

from .config import ConfigError, Configuration, PeerIdentity, Settings, SocketAddr
from .contracts import (
    AuthorityDenied,
    DeliveryFailed,
    FormatError,
    GigantoError,
    NoChange,
    NotFound,
    TypeMismatch,
)
from .reconfigure import ReconfigurationCoordinator, ReloadChannel
from .signals import LifecycleSignals, Signal
from .supervisor import LiveSettings, Supervisor

__all__ = [
    "AuthorityDenied",
    "ConfigError",
    "Configuration",
    "DeliveryFailed",
    "FormatError",
    "GigantoError",
    "LifecycleSignals",
    "LiveSettings",
    "NoChange",
    "NotFound",
    "PeerIdentity",
    "ReconfigurationCoordinator",
    "ReloadChannel",
    "Settings",
    "Signal",
    "SocketAddr",
    "Supervisor",
    "TypeMismatch",
]
