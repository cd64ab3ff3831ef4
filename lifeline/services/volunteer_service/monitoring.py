"""Background monitoring loops for the volunteer engine.

Three loops run on daemon threads:
- wellness sweep: expires workload reductions, reports at-risk volunteers
- performance rollup: refreshes response rates from recent sessions
- system health: logs volunteer pool health

Each loop waits a full interval after its run finishes. A run that is
still in progress when the next one is due causes that tick to be
skipped. Exceptions are logged and the loop carries on.
"""
import logging
import threading
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class MonitoringLoop:
    """One periodic task on its own thread."""

    def __init__(
        self,
        name: str,
        interval_seconds: float,
        task: Callable[[], Any],
    ):
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be > 0, got {interval_seconds}")

        self.name = name
        self.interval_seconds = interval_seconds
        self.task = task
        self.is_running = False
        self.last_run_time: Optional[datetime] = None
        self.last_result: Any = None
        self.run_count = 0
        self.error_count = 0
        self.skip_count = 0

        self._run_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def run_once(self) -> Dict[str, Any]:
        """Run the task once.

        Returns:
            {"skipped": True, ...} if a run is already in progress,
            otherwise {"skipped": False, "success": bool, "duration_ms": float}

        Logs:
            - LOOP_SKIPPED_ALREADY_RUNNING: Previous run still in progress
            - LOOP_ITERATION_FAILED: Task raised; the loop continues
        """
        if not self._run_lock.acquire(blocking=False):
            self.skip_count += 1
            logger.warning("LOOP_SKIPPED_ALREADY_RUNNING", extra={"loop": self.name})
            return {"skipped": True, "reason": "already_running"}

        started = time.perf_counter()
        try:
            self.is_running = True
            self.last_result = self.task()
            self.run_count += 1
            success = True
        except Exception as e:
            self.error_count += 1
            success = False
            logger.error(
                "LOOP_ITERATION_FAILED",
                extra={
                    "loop": self.name,
                    "error": str(e),
                    "error_type": type(e).__name__,
                }
            )
        finally:
            self.is_running = False
            self.last_run_time = datetime.utcnow()
            self._run_lock.release()

        duration_ms = (time.perf_counter() - started) * 1000
        logger.debug(
            "LOOP_ITERATION_COMPLETED",
            extra={"loop": self.name, "success": success, "duration_ms": round(duration_ms, 2)}
        )
        return {"skipped": False, "success": success, "duration_ms": duration_ms}

    def _run_forever(self) -> None:
        logger.info(
            "LOOP_STARTED",
            extra={"loop": self.name, "interval_seconds": self.interval_seconds}
        )
        while not self._stop_event.wait(self.interval_seconds):
            self.run_once()
        logger.info("LOOP_STOPPED", extra={"loop": self.name})

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_forever,
            name=f"volunteer-{self.name}",
            daemon=True,
        )
        self._thread.start()

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    @property
    def alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def get_status(self) -> Dict[str, Any]:
        return {
            "loop": self.name,
            "alive": self.alive,
            "is_running": self.is_running,
            "interval_seconds": self.interval_seconds,
            "last_run_time": self.last_run_time.isoformat() if self.last_run_time else None,
            "run_count": self.run_count,
            "error_count": self.error_count,
            "skip_count": self.skip_count,
        }


class VolunteerMonitor:
    """Owns the wellness, performance and health loops."""

    def __init__(
        self,
        wellness_sweep: Callable[[], Any],
        performance_rollup: Callable[[], Any],
        health_check: Callable[[], Any],
        wellness_interval: float = 300.0,
        performance_interval: float = 3600.0,
        health_interval: float = 60.0,
    ):
        self.loops: List[MonitoringLoop] = [
            MonitoringLoop("wellness_sweep", wellness_interval, wellness_sweep),
            MonitoringLoop("performance_rollup", performance_interval, performance_rollup),
            MonitoringLoop("system_health", health_interval, health_check),
        ]

    def start(self) -> None:
        for loop in self.loops:
            loop.start()
        logger.info("VOLUNTEER_MONITORING_STARTED", extra={"loops": len(self.loops)})

    def stop(self) -> None:
        for loop in self.loops:
            loop.stop()
        logger.info("VOLUNTEER_MONITORING_STOPPED")

    @property
    def running(self) -> bool:
        return any(loop.alive for loop in self.loops)

    def get_status(self) -> List[Dict[str, Any]]:
        return [loop.get_status() for loop in self.loops]
