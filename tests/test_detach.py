"""
Tests for daemon/detach.py - the double fork.

os.fork and friends are mocked; each test plays one of the three processes.
"""

import unittest
from pathlib import Path
from unittest.mock import patch

from vpnctl.daemon import detach
from vpnctl.daemon.detach import DaemonizeError, ForkRole, daemonize


class ExitCalled(Exception):
    pass


class TestDaemonize(unittest.TestCase):

    def setUp(self):
        patches = {
            "fork": patch("vpnctl.daemon.detach.os.fork"),
            "waitpid": patch("vpnctl.daemon.detach.os.waitpid"),
            "setsid": patch("vpnctl.daemon.detach.os.setsid"),
            "chdir": patch("vpnctl.daemon.detach.os.chdir"),
            "umask": patch("vpnctl.daemon.detach.os.umask"),
            "_exit": patch("vpnctl.daemon.detach.os._exit", side_effect=ExitCalled),
            "redirect": patch.object(detach, "_redirect_stdio"),
        }
        self.mocks = {name: p.start() for name, p in patches.items()}
        for p in patches.values():
            self.addCleanup(p.stop)

    def test_originator_reaps_intermediate(self):
        self.mocks["fork"].return_value = 4242
        self.mocks["waitpid"].return_value = (4242, 0)

        self.assertIs(daemonize(), ForkRole.ORIGINATOR)

        self.mocks["waitpid"].assert_called_once_with(4242, 0)
        self.mocks["setsid"].assert_not_called()
        self.mocks["redirect"].assert_not_called()

    def test_originator_reports_failed_second_fork(self):
        self.mocks["fork"].return_value = 4242
        self.mocks["waitpid"].return_value = (4242, 1 << 8)  # exit status 1

        with self.assertRaises(DaemonizeError):
            daemonize()

    def test_first_fork_failure(self):
        self.mocks["fork"].side_effect = OSError(11, "Resource temporarily unavailable")

        with self.assertRaises(DaemonizeError):
            daemonize()

    def test_intermediate(self):
        self.mocks["fork"].side_effect = [0, 4343]

        self.assertIs(daemonize(), ForkRole.INTERMEDIATE)

        self.mocks["setsid"].assert_called_once_with()
        self.mocks["chdir"].assert_not_called()

    def test_intermediate_exits_nonzero_when_second_fork_fails(self):
        self.mocks["fork"].side_effect = [0, OSError(11, "Resource temporarily unavailable")]

        with self.assertRaises(ExitCalled):
            daemonize()

        self.mocks["_exit"].assert_called_once_with(1)

    def test_worker(self):
        self.mocks["fork"].side_effect = [0, 0]
        out = Path("/tmp/vpnctl-test/daemon.out")

        self.assertIs(daemonize(stdio_path=out), ForkRole.WORKER)

        self.mocks["setsid"].assert_called_once_with()
        self.mocks["chdir"].assert_called_once_with("/")
        self.mocks["umask"].assert_called_once_with(0o022)
        self.mocks["redirect"].assert_called_once_with(out)


if __name__ == "__main__":
    unittest.main()
