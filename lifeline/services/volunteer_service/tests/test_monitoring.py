"""Tests for the background monitoring loops."""
import threading
import pytest
from unittest.mock import MagicMock

from lifeline.services.volunteer_service.monitoring import MonitoringLoop, VolunteerMonitor


class TestMonitoringLoop:
    def test_rejects_non_positive_interval(self):
        with pytest.raises(ValueError):
            MonitoringLoop("sweep", 0, lambda: None)

    def test_run_once_success(self):
        task = MagicMock(return_value={"restored": []})
        loop = MonitoringLoop("sweep", 60, task)

        result = loop.run_once()

        assert result["skipped"] is False
        assert result["success"] is True
        assert loop.last_result == {"restored": []}
        assert loop.run_count == 1
        assert loop.last_run_time is not None

    def test_failure_is_counted_not_raised(self):
        task = MagicMock(side_effect=RuntimeError("store unavailable"))
        loop = MonitoringLoop("sweep", 60, task)

        result = loop.run_once()
        loop.run_once()

        assert result["success"] is False
        assert loop.error_count == 2
        assert loop.run_count == 0
        assert loop.is_running is False

    def test_overlapping_run_is_skipped(self):
        entered = threading.Event()
        release = threading.Event()

        def slow_task():
            entered.set()
            release.wait(5)

        loop = MonitoringLoop("sweep", 60, slow_task)
        worker = threading.Thread(target=loop.run_once)
        worker.start()
        entered.wait(5)

        result = loop.run_once()
        release.set()
        worker.join(5)

        assert result == {"skipped": True, "reason": "already_running"}
        assert loop.skip_count == 1
        assert loop.run_count == 1

    def test_thread_runs_and_stops(self):
        ran = threading.Event()
        loop = MonitoringLoop("health", 0.01, ran.set)

        loop.start()
        assert ran.wait(5)
        loop.stop()

        assert loop.alive is False
        assert loop.get_status()["run_count"] >= 1

    def test_status_before_first_run(self):
        status = MonitoringLoop("health", 60, lambda: None).get_status()

        assert status["last_run_time"] is None
        assert status["alive"] is False


class TestVolunteerMonitor:
    def test_three_named_loops(self):
        monitor = VolunteerMonitor(MagicMock(), MagicMock(), MagicMock())

        assert [s["loop"] for s in monitor.get_status()] == [
            "wellness_sweep", "performance_rollup", "system_health",
        ]
        assert [s["interval_seconds"] for s in monitor.get_status()] == [300.0, 3600.0, 60.0]

    def test_start_and_stop(self):
        sweep = threading.Event()
        monitor = VolunteerMonitor(sweep.set, MagicMock(), MagicMock(), wellness_interval=0.01)

        monitor.start()
        assert monitor.running is True
        assert sweep.wait(5)
        monitor.stop()

        assert monitor.running is False
