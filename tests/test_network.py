"""Tests for the connectivity monitor."""

import threading
from unittest.mock import patch

from src.network import NetworkMonitor, probe_connection


class TestProbeConnection:
    @patch("src.network.socket.create_connection")
    def test_reachable(self, mock_connect):
        assert probe_connection("1.1.1.1", 443, timeout=1) is True
        mock_connect.assert_called_once_with(("1.1.1.1", 443), timeout=1)

    @patch("src.network.socket.create_connection", side_effect=OSError("unreachable"))
    def test_unreachable(self, _mock_connect):
        assert probe_connection("1.1.1.1") is False


class TestNetworkMonitor:
    def setup_method(self):
        self.states = [True]
        self.changes = []
        self.monitor = NetworkMonitor(
            self.changes.append, probe=lambda: self.states[0], interval=0.01
        )

    def teardown_method(self):
        self.monitor.stop()

    def test_first_check_reports_state(self):
        assert self.monitor.is_online is None

        self.monitor.check()

        assert self.changes == [True]
        assert self.monitor.is_online is True

    def test_only_changes_are_reported(self):
        self.monitor.check()
        self.monitor.check()
        self.states[0] = False
        self.monitor.check()
        self.monitor.check()
        self.states[0] = True
        self.monitor.check()

        assert self.changes == [True, False, True]

    def test_probe_does_not_fire_callback(self):
        assert self.monitor.probe() is True
        assert self.changes == []

    def test_callback_error_is_logged(self):
        def broken(online):
            raise RuntimeError("listener bug")

        monitor = NetworkMonitor(broken, probe=lambda: False)

        assert monitor.check() is False
        assert monitor.is_online is False

    def test_background_thread_reports(self):
        seen = threading.Event()
        monitor = NetworkMonitor(lambda online: seen.set(), probe=lambda: True, interval=0.01)

        monitor.start()
        try:
            assert seen.wait(2)
        finally:
            monitor.stop()
