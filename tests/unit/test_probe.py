"""Tests for the TCP connectivity gate."""
import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from replisync.sync.probe import ConnectivityProbe


def _writer():
    writer = MagicMock()
    writer.wait_closed = AsyncMock()
    return writer


class TestConnectivityProbe:
    @pytest.mark.asyncio
    async def test_online_when_first_host_connects(self):
        writer = _writer()
        probe = ConnectivityProbe(["a.example", "b.example"])

        with patch("asyncio.open_connection", new=AsyncMock(return_value=(MagicMock(), writer))) as conn:
            assert await probe.is_online() is True

        conn.assert_awaited_once_with("a.example", 80)
        writer.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_falls_through_to_later_host(self):
        probe = ConnectivityProbe(["a.example", "b.example"], port=443)
        side_effects = [OSError("unreachable"), (MagicMock(), _writer())]

        with patch("asyncio.open_connection", new=AsyncMock(side_effect=side_effects)) as conn:
            assert await probe.is_online() is True

        assert conn.await_count == 2
        conn.assert_awaited_with("b.example", 443)

    @pytest.mark.asyncio
    async def test_offline_when_every_host_fails(self):
        probe = ConnectivityProbe(["a.example", "b.example", "c.example"])
        side_effects = [OSError("refused"), asyncio.TimeoutError(), OSError("no route")]

        with patch("asyncio.open_connection", new=AsyncMock(side_effect=side_effects)):
            assert await probe.is_online() is False

    @pytest.mark.asyncio
    async def test_empty_host_list_is_online(self):
        with patch("asyncio.open_connection", new=AsyncMock()) as conn:
            assert await ConnectivityProbe([]).is_online() is True
        conn.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_slow_host_times_out(self):
        async def never_connects(host, port):
            await asyncio.sleep(10)

        probe = ConnectivityProbe(["slow.example"], timeout=0.05)
        with patch("asyncio.open_connection", new=never_connects):
            assert await probe.is_online() is False

    def test_timeout_is_capped(self):
        assert ConnectivityProbe(["a"], timeout=30).timeout == 3.0
        assert ConnectivityProbe(["a"], timeout=1).timeout == 1
