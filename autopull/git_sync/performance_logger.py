"""Timing of reconciliation stages."""

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Optional, Any, Generator


SLOW_STAGE_SECONDS = 30.0


@dataclass
class PerformanceMetrics:
    """Performance metrics for the latest run of a stage."""
    operation: str
    duration: float
    start_time: float
    end_time: float
    context: Optional[Dict[str, Any]] = None
    success: bool = True


class PerformanceLogger:
    """
    Performance logger for reconciliation stages.

    Keeps the latest metrics per stage and how many times each ran, so the
    agent can log a summary when it shuts down.
    """

    def __init__(self, logger_name: str = 'autopull.performance'):
        self.logger = logging.getLogger(logger_name)
        self._metrics: Dict[str, PerformanceMetrics] = {}
        self._runs: Dict[str, int] = {}

    @contextmanager
    def time_operation(
        self,
        operation: str,
        context: Optional[Dict[str, Any]] = None,
        log_level: int = logging.DEBUG
    ) -> Generator[PerformanceMetrics, None, None]:
        """
        Context manager for timing a stage.

        The yielded metrics object can be marked ``success = False`` by the
        caller when the stage failed without raising.
        """
        start_time = time.monotonic()
        metrics = PerformanceMetrics(
            operation=operation,
            duration=0.0,
            start_time=start_time,
            end_time=start_time,
            context=context
        )
        self.logger.log(log_level, f"⏱️ Starting {operation}")

        try:
            yield metrics
        except Exception as e:
            metrics.success = False
            self.logger.error(f"❌ {operation} failed after {time.monotonic() - start_time:.3f}s: {e}")
            raise
        finally:
            metrics.end_time = time.monotonic()
            metrics.duration = metrics.end_time - start_time
            self._metrics[operation] = metrics
            self._runs[operation] = self._runs.get(operation, 0) + 1

            status_icon = "✅" if metrics.success else "❌"
            self.logger.log(log_level, f"{status_icon} {operation} finished in {metrics.duration:.3f}s")
            if metrics.duration > SLOW_STAGE_SECONDS:
                self.logger.warning(f"⚠️ Slow stage detected: '{operation}' took {metrics.duration:.3f}s")

    def get_performance_summary(self) -> Dict[str, Any]:
        """
        Get a summary of performance metrics.

        Returns:
            Dictionary containing performance summary
        """
        if not self._metrics:
            return {"total_operations": 0, "average_duration": 0.0}

        total_operations = sum(self._runs.values())
        latest = list(self._metrics.values())
        average_duration = sum(m.duration for m in latest) / len(latest)
        slowest_op = max(latest, key=lambda m: m.duration)

        return {
            "total_operations": total_operations,
            "average_duration": average_duration,
            "runs": dict(self._runs),
            "slowest_operation": {
                "name": slowest_op.operation,
                "duration": slowest_op.duration
            }
        }

    def log_performance_summary(self) -> None:
        """Log a summary of all performance metrics."""
        summary = self.get_performance_summary()

        if summary["total_operations"] == 0:
            self.logger.info("📊 No performance metrics available")
            return

        self.logger.info(
            f"📊 Performance Summary: {summary['total_operations']} stage runs, "
            f"avg latest {summary['average_duration']:.3f}s"
        )

        slowest = summary["slowest_operation"]
        self.logger.info(f"🐌 Slowest stage: {slowest['name']} ({slowest['duration']:.3f}s)")
