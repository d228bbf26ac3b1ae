import asyncio
import logging

import pytest

from giganto.core.config import ConfigError, Settings
from giganto.core.contracts import DeliveryFailed, FormatError, NoChange
from giganto.core.reconfigure import ReconfigurationCoordinator, ReloadChannel


@pytest.mark.asyncio
async def test_identical_draft_is_no_change(remote_settings: Settings) -> None:
    channel = ReloadChannel()
    coordinator = ReconfigurationCoordinator(channel, delay=0.01)

    with pytest.raises(NoChange):
        await coordinator.propose(remote_settings, remote_settings.to_toml_string())

    assert coordinator.pending == 0
    await asyncio.sleep(0.03)
    assert channel.qsize() == 0


@pytest.mark.asyncio
async def test_unparsable_draft_schedules_nothing(
    remote_settings: Settings, toml_content: str
) -> None:
    channel = ReloadChannel()
    coordinator = ReconfigurationCoordinator(channel, delay=0.01)
    before = remote_settings.config

    with pytest.raises(ConfigError):
        await coordinator.propose(remote_settings, "max_open_files = [")
    with pytest.raises(FormatError):
        await coordinator.propose(
            remote_settings, toml_content.replace('"0.0.0.0:38370"', '"nope"')
        )

    assert remote_settings.config == before
    assert coordinator.pending == 0


@pytest.mark.asyncio
async def test_accepted_draft_is_delivered_after_delay(
    default_settings: Settings, toml_content: str
) -> None:
    channel = ReloadChannel()
    coordinator = ReconfigurationCoordinator(channel, delay=0.05)

    accepted = await coordinator.propose(default_settings, toml_content)

    assert accepted is True
    assert coordinator.pending == 1
    assert channel.qsize() == 0

    await coordinator.wait_idle()
    assert channel.qsize() == 1
    assert await channel.recv() == toml_content
    assert coordinator.pending == 0


@pytest.mark.asyncio
async def test_concurrent_proposals_are_each_accepted(
    default_settings: Settings, toml_content: str
) -> None:
    channel = ReloadChannel(maxsize=4)
    coordinator = ReconfigurationCoordinator(channel, delay=0.01)

    for threads in (2, 3):
        draft = toml_content.replace("num_of_thread = 8", f"num_of_thread = {threads}")
        assert await coordinator.propose(default_settings, draft)

    await coordinator.wait_idle()
    assert channel.qsize() == 2


@pytest.mark.asyncio
async def test_delivery_failure_is_logged_not_raised(
    default_settings: Settings, toml_content: str, caplog: pytest.LogCaptureFixture
) -> None:
    channel = ReloadChannel()
    channel.close()
    coordinator = ReconfigurationCoordinator(channel, delay=0.01)

    with caplog.at_level(logging.ERROR, logger="giganto.core.reconfigure"):
        assert await coordinator.propose(default_settings, toml_content) is True
        await coordinator.wait_idle()

    assert "Failed to send config" in caplog.text


@pytest.mark.asyncio
async def test_closed_channel_send_and_recv() -> None:
    channel = ReloadChannel()
    await channel.send("draft")
    channel.close()

    with pytest.raises(DeliveryFailed):
        await channel.send("late")
    assert await channel.recv() == "draft"
    assert await channel.recv() is None


@pytest.mark.asyncio
async def test_recv_wakes_on_close() -> None:
    channel = ReloadChannel()
    receiver = asyncio.create_task(channel.recv())
    await asyncio.sleep(0)
    channel.close()
    assert await asyncio.wait_for(receiver, timeout=0.5) is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "draft",
    ["", 'ingest_srv_addr = "10.0.0.1:38370"\nnum_of_thread = 2\n'],
)
async def test_partial_draft_is_rejected(remote_settings: Settings, draft: str) -> None:
    channel = ReloadChannel()
    coordinator = ReconfigurationCoordinator(channel, delay=0.01)

    with pytest.raises(ConfigError, match="missing fields"):
        await coordinator.propose(remote_settings, draft)

    assert coordinator.pending == 0
    await asyncio.sleep(0.03)
    assert channel.qsize() == 0


@pytest.mark.asyncio
async def test_draft_may_omit_peer_settings(remote_settings: Settings, toml_content: str) -> None:
    channel = ReloadChannel()
    coordinator = ReconfigurationCoordinator(channel, delay=0)
    lines = toml_content.splitlines(keepends=True)
    draft = "".join(line for line in lines if not line.startswith(("addr_to_peers", "peers")))

    assert await coordinator.propose(remote_settings, draft) is True
    await coordinator.wait_idle()
    assert await channel.recv() == draft


@pytest.mark.asyncio
async def test_close_fails_delivery_waiting_on_full_channel(
    default_settings: Settings, toml_content: str, caplog: pytest.LogCaptureFixture
) -> None:
    channel = ReloadChannel(maxsize=1)
    await channel.send("queued")
    coordinator = ReconfigurationCoordinator(channel, delay=0)

    with caplog.at_level(logging.WARNING, logger="giganto.core.reconfigure"):
        assert await coordinator.propose(default_settings, toml_content) is True
        await asyncio.sleep(0.02)
        assert coordinator.pending == 1

        channel.close()
        await asyncio.wait_for(coordinator.wait_idle(), timeout=1.0)

    assert "Reload channel is full" in caplog.text
    assert "Failed to send config" in caplog.text
    assert coordinator.pending == 0
    assert await channel.recv() == "queued"
    assert await channel.recv() is None


@pytest.mark.asyncio
async def test_send_waiting_on_full_channel_completes_once_drained() -> None:
    channel = ReloadChannel(maxsize=1)
    await channel.send("first")
    sender = asyncio.create_task(channel.send("second"))
    await asyncio.sleep(0)
    assert not sender.done()

    assert await channel.recv() == "first"
    await asyncio.wait_for(sender, timeout=0.5)
    assert await channel.recv() == "second"
