"""
Tests for daemon/client.py - one request per connection.
"""

import asyncio
import shutil
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from vpnctl.daemon.client import ControlClient, DaemonNotRunningError, request, send_request
from vpnctl.daemon.protocol import (
    InfoRequest,
    StopRequest,
    StopResult,
    read_request,
    write_message,
)


class TestControlClient(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.path = Path(self.temp_dir) / "vpnctl.sock"
        self.received = []

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    async def _serve(self, answer: bool = True):
        async def handler(reader, writer):
            message = await read_request(reader)
            self.received.append(message)
            if answer:
                await write_message(writer, StopResult(server_name="work"))
            writer.close()

        return await asyncio.start_unix_server(handler, path=str(self.path))

    async def test_connect_without_socket_does_no_io(self):
        with patch("vpnctl.daemon.client.asyncio.open_unix_connection") as open_conn:
            with self.assertRaises(DaemonNotRunningError):
                await ControlClient.connect(self.path)
        open_conn.assert_not_called()

    async def test_request_round_trip(self):
        server = await self._serve()
        async with server:
            response = await request(StopRequest(), self.path)

        self.assertEqual(response, StopResult(server_name="work"))
        self.assertEqual(len(self.received), 1)
        self.assertIsInstance(self.received[0], StopRequest)

    async def test_send_then_receive(self):
        server = await self._serve()
        async with server:
            client = await ControlClient.connect(self.path)
            async with client:
                await client.send(InfoRequest())
                response = await client.receive()

        self.assertIsInstance(self.received[0], InfoRequest)
        self.assertEqual(response.server_name, "work")

    async def test_receive_none_when_daemon_hangs_up(self):
        server = await self._serve(answer=False)
        async with server:
            response = await request(InfoRequest(), self.path)
        self.assertIsNone(response)

    async def test_stale_socket_file_raises_os_error(self):
        self.path.write_text("")
        with self.assertRaises(OSError):
            await ControlClient.connect(self.path)


class TestSendRequest(unittest.TestCase):

    def test_not_running(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            with self.assertRaises(DaemonNotRunningError):
                send_request(InfoRequest(), Path(temp_dir) / "vpnctl.sock")


if __name__ == "__main__":
    unittest.main()
