"""
Tests for daemon/channel.py - the rendezvous socket.
"""

import asyncio
import shutil
import stat
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from vpnctl.daemon.channel import (
    ChannelCleanupError,
    ChannelError,
    ChannelExistsError,
    ControlChannel,
    exists,
)


class TestControlChannel(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.path = Path(self.temp_dir) / "vpnctl.sock"

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_bind_creates_socket_file(self):
        with ControlChannel.bind(self.path):
            self.assertTrue(exists(self.path))
            mode = self.path.stat().st_mode
            self.assertTrue(stat.S_ISSOCK(mode))
            self.assertEqual(stat.S_IMODE(mode), 0o600)
        self.assertFalse(exists(self.path))

    def test_bind_refuses_existing_path(self):
        self.path.write_text("stale")

        with self.assertRaises(ChannelExistsError):
            ControlChannel.bind(self.path)

        # Never overwritten or removed
        self.assertEqual(self.path.read_text(), "stale")

    def test_bind_refuses_live_socket(self):
        with ControlChannel.bind(self.path):
            with self.assertRaises(ChannelExistsError):
                ControlChannel.bind(self.path)
            self.assertTrue(exists(self.path))

    def test_close_is_idempotent(self):
        channel = ControlChannel.bind(self.path)
        channel.close()
        channel.close()
        self.assertTrue(channel.closed)
        self.assertFalse(exists(self.path))

    def test_close_tolerates_missing_file(self):
        channel = ControlChannel.bind(self.path)
        self.path.unlink()
        with self.assertLogs("vpnctl.daemon.channel", level="WARNING"):
            channel.close()

    def test_cleanup_failure_is_raised(self):
        channel = ControlChannel.bind(self.path)
        with patch.object(Path, "unlink", side_effect=PermissionError("read-only")):
            with self.assertRaises(ChannelCleanupError):
                channel.close()
        self.path.unlink()

    async def test_accept_returns_streams(self):
        with ControlChannel.bind(self.path) as channel:
            accept = asyncio.create_task(channel.accept())
            _, client_writer = await asyncio.open_unix_connection(str(self.path))
            reader, writer = await asyncio.wait_for(accept, 5)

            client_writer.write(b"ping")
            await client_writer.drain()
            self.assertEqual(await reader.readexactly(4), b"ping")

            writer.close()
            client_writer.close()

    async def test_accept_on_closed_channel_raises(self):
        channel = ControlChannel.bind(self.path)
        channel.close()
        with self.assertRaises(ChannelError):
            await channel.accept()

    async def test_pending_accept_can_be_cancelled(self):
        with ControlChannel.bind(self.path) as channel:
            accept = asyncio.create_task(channel.accept())
            await asyncio.sleep(0)
            accept.cancel()
            with self.assertRaises(asyncio.CancelledError):
                await accept
        self.assertFalse(exists(self.path))


if __name__ == "__main__":
    unittest.main()
