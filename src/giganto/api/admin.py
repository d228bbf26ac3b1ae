"""
FastAPI-powered administrative surface for configuration and lifecycle control.

Configuration queries and drafts are gated by the management mode: a process
started from a local configuration file refuses remote configuration access.
Lifecycle signals, the liveness probe and the resource snapshot are always
available.
"""

from __future__ import annotations

import asyncio
import logging
import socket
import ssl
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

import psutil
import uvicorn
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..core.config import ConfigError, Configuration, PeerIdentity, format_duration
from ..core.contracts import (
    AuthorityDenied,
    DeliveryFailed,
    FormatError,
    GigantoError,
    NoChange,
    NotFound,
    StorageDiagnostics,
    TypeMismatch,
)
from ..core.reconfigure import ReconfigurationCoordinator
from ..core.signals import LifecycleSignals, Signal
from ..core.supervisor import LiveSettings

logger = logging.getLogger(__name__)

_ERROR_STATUS: dict[type[GigantoError], int] = {
    AuthorityDenied: 403,
    NotFound: 404,
    NoChange: 409,
    FormatError: 422,
    ConfigError: 422,
    TypeMismatch: 422,
    DeliveryFailed: 503,
}


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Status(_CamelModel):
    """Host resource usage snapshot."""

    name: str
    cpu_usage: float
    total_memory: int
    used_memory: int
    total_disk_space: int
    used_disk_space: int


class PeerView(_CamelModel):
    addr: str
    hostname: str

    @classmethod
    def from_peer(cls, peer: PeerIdentity) -> PeerView:
        return cls(addr=peer.get_addr(), hostname=peer.get_hostname())


class ConfigView(_CamelModel):
    """Live configuration as exposed to remote callers."""

    ingest_srv_addr: str
    publish_srv_addr: str
    graphql_srv_addr: str
    retention: str
    data_dir: str
    log_dir: str
    export_dir: str
    max_open_files: int
    max_mb_of_level_base: str = Field(description="u64 value, string encoded.")
    num_of_thread: int
    max_sub_compactions: str = Field(description="u32 value, string encoded.")
    addr_to_peers: str | None
    peers: list[PeerView] | None
    ack_transmission: int

    @classmethod
    def from_config(cls, config: Configuration) -> ConfigView:
        return cls(
            ingest_srv_addr=str(config.ingest_srv_addr),
            publish_srv_addr=str(config.publish_srv_addr),
            graphql_srv_addr=str(config.graphql_srv_addr),
            retention=format_duration(config.retention),
            data_dir=str(config.data_dir),
            log_dir=str(config.log_dir),
            export_dir=str(config.export_dir),
            max_open_files=config.max_open_files,
            max_mb_of_level_base=str(config.max_mb_of_level_base),
            num_of_thread=config.num_of_thread,
            max_sub_compactions=str(config.max_sub_compactions),
            addr_to_peers=str(config.addr_to_peers) if config.addr_to_peers else None,
            peers=(
                [PeerView.from_peer(peer) for peer in config.sorted_peers()]
                if config.peers is not None
                else None
            ),
            ack_transmission=config.ack_transmission,
        )


class SetConfigRequest(BaseModel):
    """Request body carrying a TOML configuration draft."""

    draft: str


class PropertiesView(_CamelModel):
    estimate_live_data_size: int
    estimate_num_keys: int
    stats: str


def _disk_root(path: Path) -> Path:
    candidate = path
    while not candidate.exists() and candidate != candidate.parent:
        candidate = candidate.parent
    return candidate


def resource_usage(data_dir: Path) -> Status:
    """Collect CPU, memory and disk usage of the host (blocking)."""
    memory = psutil.virtual_memory()
    disk = psutil.disk_usage(str(_disk_root(data_dir)))
    return Status(
        name=socket.gethostname(),
        cpu_usage=psutil.cpu_percent(interval=0.1),
        total_memory=memory.total,
        used_memory=memory.used,
        total_disk_space=disk.total,
        used_disk_space=disk.used,
    )


class AdminApi:
    """Expose configuration, reconfiguration and lifecycle control over HTTP."""

    name = "api.admin"

    def __init__(
        self,
        *,
        settings: LiveSettings,
        coordinator: ReconfigurationCoordinator,
        signals: LifecycleSignals,
        is_local: bool,
        storage: StorageDiagnostics | None = None,
        debug: bool = False,
        cert: str | None = None,
        key: str | None = None,
        ca_certs: Sequence[str] = (),
        config_factory: Callable[..., uvicorn.Config] | None = None,
        server_factory: Callable[[uvicorn.Config], uvicorn.Server] | None = None,
    ) -> None:
        self._settings = settings
        self._coordinator = coordinator
        self._signals = signals
        self._is_local = is_local
        self._storage = storage
        self._debug = debug
        self._cert = cert
        self._key = key
        self._ca_certs = list(ca_certs)
        self._app: FastAPI | None = None
        self._server: uvicorn.Server | None = None
        self._server_task: asyncio.Task[None] | None = None
        self._config_factory = config_factory or uvicorn.Config
        self._server_factory = server_factory or uvicorn.Server
        if (cert is None) != (key is None):
            raise ValueError("TLS for AdminApi needs both certfile and keyfile.")

    @property
    def is_local(self) -> bool:
        return self._is_local

    @property
    def app(self) -> FastAPI:
        if self._app is None:
            self._app = self._build_app()
        return self._app

    async def start(self) -> None:
        addr = self._settings.current.config.graphql_srv_addr
        ssl_kwargs: dict[str, Any] = {}
        if self._cert and self._key:
            ssl_kwargs["ssl_certfile"] = self._cert
            ssl_kwargs["ssl_keyfile"] = self._key
            if self._ca_certs:
                if len(self._ca_certs) > 1:
                    logger.warning(
                        "Client verification uses %s only; %d more CA files ignored.",
                        self._ca_certs[0],
                        len(self._ca_certs) - 1,
                    )
                ssl_kwargs["ssl_ca_certs"] = self._ca_certs[0]
                ssl_kwargs["ssl_cert_reqs"] = ssl.CERT_REQUIRED
        config = self._config_factory(
            app=self.app,
            host=str(addr.ip),
            port=addr.port,
            loop="asyncio",
            lifespan="on",
            log_level="info",
            **ssl_kwargs,
        )
        self._server = self._server_factory(config)
        self._server_task = asyncio.create_task(self._server.serve(), name="giganto-admin-api")
        scheme = "https" if ssl_kwargs else "http"
        logger.info("AdminApi listening on %s://%s", scheme, addr)

    async def stop(self) -> None:
        if self._server_task:
            self._server.should_exit = True  # type: ignore[union-attr]
            await asyncio.wait([self._server_task], timeout=1)
            self._server_task = None
        self._server = None

    async def restart(self, _settings: Any = None) -> None:
        """Rebind the HTTP server, picking up a changed listen address."""
        await self.stop()
        await self.start()

    def config(self) -> Configuration:
        if self._is_local:
            raise AuthorityDenied()
        return self._settings.current.config

    async def set_config(self, draft: str) -> bool:
        if self._is_local:
            logger.warning("Config is local")
            return False
        return await self._coordinator.propose(self._settings.current, draft)

    def fire(self, signal: Signal) -> bool:
        self._signals.fire(signal)
        return True

    def _build_app(self) -> FastAPI:
        app = FastAPI(title="Giganto Admin API", version="0.22.1")

        @app.exception_handler(GigantoError)
        async def control_plane_error(request: Request, exc: GigantoError) -> JSONResponse:
            kind = type(exc).__name__
            status_code = _ERROR_STATUS.get(type(exc), 400)
            return JSONResponse(
                status_code=status_code, content={"error": kind, "message": str(exc)}
            )

        @app.get("/ping")
        async def ping() -> bool:
            return True

        @app.get("/status", response_model=Status)
        async def status() -> Status:
            data_dir = self._settings.current.config.data_dir
            return await asyncio.to_thread(resource_usage, data_dir)

        @app.get("/config", response_model=ConfigView)
        async def get_config() -> ConfigView:
            return ConfigView.from_config(self.config())

        @app.post("/config")
        async def set_config(request: SetConfigRequest) -> bool:
            return await self.set_config(request.draft)

        @app.post("/stop")
        async def stop() -> bool:
            return self.fire(Signal.STOP)

        @app.post("/reboot")
        async def reboot() -> bool:
            return self.fire(Signal.REBOOT)

        @app.post("/shutdown")
        async def shutdown() -> bool:
            return self.fire(Signal.POWER_OFF)

        if self._debug:

            @app.get("/properties", response_model=PropertiesView)
            async def properties_cf(
                record_type: str = Query(alias="recordType"),
            ) -> PropertiesView:
                if self._storage is None:
                    raise HTTPException(
                        status_code=503, detail="Storage diagnostics are not attached."
                    )
                try:
                    props = self._storage.properties_cf(record_type)
                except KeyError as exc:
                    raise NotFound(record_type, f"{record_type} not found.") from exc
                return PropertiesView(
                    estimate_live_data_size=props.estimate_live_data_size,
                    estimate_num_keys=props.estimate_num_keys,
                    stats=props.stats,
                )

        return app


__all__ = ["AdminApi", "ConfigView", "PeerView", "SetConfigRequest", "Status", "resource_usage"]
