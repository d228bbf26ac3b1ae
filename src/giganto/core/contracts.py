"""
Contracts shared by the giganto control plane.

Every failure the control plane can report to an administrative caller has
its own exception class so callers can tell them apart. The protocols at the
bottom describe the collaborators the control plane talks to without owning
them (peer descriptions and the storage engine diagnostics).
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field


class GigantoError(Exception):
    """Base class for all control-plane failures."""


class FormatError(GigantoError):
    """A configuration value could not be parsed (address, duration)."""

    def __init__(self, key: str, value: Any, reason: str | None = None) -> None:
        self.key = key
        self.value = value
        self.reason = reason
        message = f'invalid {key} "{value}"'
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class NotFound(GigantoError):
    """An expected key or section is missing from a configuration document."""

    def __init__(self, key: str, message: str | None = None) -> None:
        self.key = key
        super().__init__(message or f"{key} not found.")


class TypeMismatch(GigantoError):
    """A document value exists but does not have the expected shape."""

    def __init__(self, key: str, message: str | None = None) -> None:
        self.key = key
        super().__init__(message or f"parse failed: {key}'s item format is not available.")


class AuthorityDenied(GigantoError):
    """Remote configuration access attempted while the process runs in local mode."""

    def __init__(self, message: str = "Config is local") -> None:
        super().__init__(message)


class NoChange(GigantoError):
    """A proposed configuration is identical to the live one."""

    def __init__(self, message: str = "No changes") -> None:
        super().__init__(message)


class DeliveryFailed(GigantoError):
    """An accepted draft could not be handed to the reload consumer."""


@runtime_checkable
class TomlPeers(Protocol):
    """Anything that can describe a peer entry of the `peers` array."""

    def get_hostname(self) -> str: ...

    def get_addr(self) -> str: ...


class Properties(BaseModel):
    """Storage-engine statistics for a single column family."""

    model_config = ConfigDict(frozen=True)

    estimate_live_data_size: int = Field(ge=0)
    estimate_num_keys: int = Field(ge=0)
    stats: str = Field(default="")


@runtime_checkable
class StorageDiagnostics(Protocol):
    """Read-only view on the storage engine used by the debug endpoint."""

    def properties_cf(self, record_type: str) -> Properties: ...


__all__ = [
    "AuthorityDenied",
    "DeliveryFailed",
    "FormatError",
    "GigantoError",
    "NoChange",
    "NotFound",
    "Properties",
    "StorageDiagnostics",
    "TomlPeers",
    "TypeMismatch",
]
