from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from giganto.core.config import Settings


def _write_toml(path: Path, content: str) -> None:
    path.write_text(textwrap.dedent(content).strip() + "\n", encoding="utf-8")


TEST_TOML_CONTENT = """
ingest_srv_addr = "0.0.0.0:38370"
publish_srv_addr = "0.0.0.0:38371"
graphql_srv_addr = "127.0.0.1:8442"
data_dir = "tests/data"
retention = "100d"
log_dir = "/data/logs/apps"
export_dir = "tests/export"
ack_transmission = 1024
max_open_files = 8000
max_mb_of_level_base = 512
num_of_thread = 8
max_sub_compactions = 2
addr_to_peers = "127.0.0.1:48383"
peers = [{ addr = "127.0.0.1:60192", hostname = "node2" }]
"""


@pytest.fixture
def toml_content() -> str:
    """A complete draft that differs from the defaults."""

    return TEST_TOML_CONTENT


@pytest.fixture
def sample_config_file(tmp_path: Path) -> Path:
    """
    Provide a commented configuration file on disk for local-mode tests.
    """

    config_file = tmp_path / "config.toml"
    content = f"""
    # giganto node configuration
    ingest_srv_addr = "0.0.0.0:38370"
    publish_srv_addr = "0.0.0.0:38371"  # publish endpoint
    graphql_srv_addr = "127.0.0.1:8442"
    data_dir = "{(tmp_path / 'data').as_posix()}"
    retention = "30d"
    log_dir = "{(tmp_path / 'logs').as_posix()}"
    export_dir = "{(tmp_path / 'export').as_posix()}"
    max_open_files = 4000
    addr_to_peers = "254.254.254.254:38383"
    peers = []

    # kept by the operator, unknown to the model
    operator_note = "rack 4"
    """
    _write_toml(config_file, content)
    return config_file


@pytest.fixture
def default_settings() -> Settings:
    return Settings.from_server("")


@pytest.fixture
def remote_settings(toml_content: str) -> Settings:
    return Settings.from_server(toml_content)
