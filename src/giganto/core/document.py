"""
Format-preserving edits of the persisted TOML configuration.

The on-disk file is handled as a tomlkit document rather than being
round-tripped through `Configuration`, so comments, key order and keys the
model does not know about survive an edit.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from pathlib import Path

import tomlkit
from tomlkit.items import Array

from .config import Settings
from .contracts import NotFound, TomlPeers, TypeMismatch

logger = logging.getLogger(__name__)

CONFIG_PUBLISH_SRV_ADDR = "publish_srv_addr"
CONFIG_GRAPHQL_SRV_ADDR = "graphql_srv_addr"
CONFIG_PEERS = "peers"


def settings_to_doc(settings: Settings) -> tomlkit.TOMLDocument:
    """Render settings as an editable document; every field is present."""
    return tomlkit.parse(settings.to_toml_string())


def read_toml_file(path: str | Path) -> tomlkit.TOMLDocument:
    return tomlkit.parse(Path(path).read_text(encoding="utf-8"))


def write_toml_file(doc: tomlkit.TOMLDocument, path: str | Path) -> None:
    """
    Overwrite an existing file with the document's text.

    The file is truncated and rewritten in place; it is never created, so a
    missing file or a permission problem surfaces as `OSError`.
    """
    output = doc.as_string()
    fd = os.open(path, os.O_WRONLY | os.O_TRUNC)
    with open(fd, "w", encoding="utf-8") as config_file:
        config_file.write(output)
    logger.debug("Wrote configuration document to %s", path)


def parse_toml_element_to_string(key: str, doc: tomlkit.TOMLDocument) -> str:
    item = doc.get(key)
    if item is None:
        raise NotFound(key)
    if not isinstance(item, str):
        raise TypeMismatch(key)
    return str(item)


def insert_toml_peers(doc: tomlkit.TOMLDocument, peers: Iterable[TomlPeers] | None) -> None:
    """
    Replace the contents of the existing ``peers`` array.

    ``None`` leaves the document untouched. The array itself must already
    exist; it is never created. All entries are built before the array is
    cleared so a failure leaves the document as it was.
    """
    if peers is None:
        return
    array = doc.get(CONFIG_PEERS)
    if not isinstance(array, Array):
        raise NotFound(CONFIG_PEERS, "insert failed: peers option not found")
    entries = []
    for peer in peers:
        addr = peer.get_addr()
        hostname = peer.get_hostname()
        if not isinstance(addr, str) or not isinstance(hostname, str):
            raise TypeMismatch(
                CONFIG_PEERS, "insert failed: peer's `addr`, `hostname` option not found."
            )
        entry = tomlkit.inline_table()
        entry.append("addr", addr)
        entry.append("hostname", hostname)
        entries.append(entry)
    array.clear()
    for entry in entries:
        array.append(entry)


__all__ = [
    "CONFIG_GRAPHQL_SRV_ADDR",
    "CONFIG_PEERS",
    "CONFIG_PUBLISH_SRV_ADDR",
    "insert_toml_peers",
    "parse_toml_element_to_string",
    "read_toml_file",
    "settings_to_doc",
    "write_toml_file",
]
