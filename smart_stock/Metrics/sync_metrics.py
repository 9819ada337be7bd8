# sync_metrics.py
# Description: Structured sync metrics, logged through loguru on a dedicated METRIC level.
#
# Imports
import functools
import time
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional, Union
#
# Third-party Imports
from loguru import logger
#
# Local Imports
from smart_stock.utils.time_utils import utc_now_iso
if TYPE_CHECKING:
    from smart_stock.Sync.Sync_Client import SyncReport
    from smart_stock.Sync.exceptions import SyncError
#
############################################################################################################
#
# Functions:

Labels = Dict[str, Union[str, int, float, bool]]

METRIC_LEVEL = "METRIC"

# A dedicated level lets a sink capture metrics only (see Logging_Config).
try:
    logger.level(METRIC_LEVEL)
except ValueError:
    logger.level(METRIC_LEVEL, no=25, color="<blue>")


def emit_metric(name: str, kind: str, value: Any, labels: Optional[Labels] = None) -> None:
    """Logs one metric sample at the METRIC level with its fields bound as extras."""
    labels = dict(labels or {})
    logger.bind(metric=name, kind=kind, value=value, labels=labels, recorded_at=utc_now_iso()).log(
        METRIC_LEVEL, f"{name}={value} {labels}")


class SyncMetrics:
    """
    Metrics for one sync engine. Every sample carries the engine's client id.

    Recording never raises: a broken sink costs the sample, not the sync cycle.
    """

    def __init__(self, client_id: str):
        self.client_id = client_id

    def _labels(self, **labels) -> Labels:
        return {"client_id": self.client_id, **labels}

    def record_stage(self, stage: str, status: str, seconds: float) -> None:
        try:
            emit_metric("sync_stage_duration_seconds", "histogram", seconds,
                        self._labels(stage=stage, status=status))
        except Exception as e:
            logger.warning(f"Failed to record {stage} stage metric: {e}")

    def record_skipped(self) -> None:
        try:
            emit_metric("sync_cycles_skipped_total", "counter", 1, self._labels())
        except Exception as e:
            logger.warning(f"Failed to record skipped sync metric: {e}")

    def record_cycle(self, duration: float, report: Optional["SyncReport"] = None,
                     error: Optional["SyncError"] = None) -> None:
        """
        Records the outcome of one cycle.

        A successful cycle passes its `report`; the pushed and pulled counts go
        out per collection, so a dashboard can tell a busy audit log from a
        busy inventory. A failed cycle passes the `error` instead and is
        labelled with the stage that failed.
        """
        status = "success" if error is None else "failure"
        outcome = self._labels(status=status)
        if error is not None:
            outcome["stage"] = error.stage
        try:
            emit_metric("sync_cycles_total", "counter", 1, outcome)
            emit_metric("sync_cycle_duration_seconds", "histogram", duration, outcome)
            if report is None:
                return
            for collection, count in report.pushed.counts.items():
                if count:
                    emit_metric("sync_records_pushed", "counter", count, self._labels(collection=collection))
            for collection, count in report.pulled.fetched.items():
                if count:
                    emit_metric("sync_records_pulled", "counter", count, self._labels(collection=collection))
            emit_metric("sync_pull_failed_records", "gauge", len(report.pulled.failures), self._labels())
        except Exception as e:
            logger.warning(f"Failed to record sync cycle metrics: {e}")


def timed_stage(stage: str) -> Callable:
    """
    Decorator for sync engine stage methods.

    Times the call and reports it through the engine's `metrics`, labelled
    with `stage` and whether the call raised.
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(self, *args, **kwargs):
            start_time = time.perf_counter()
            status = "success"
            try:
                return func(self, *args, **kwargs)
            except Exception:
                status = "failure"
                raise
            finally:
                self.metrics.record_stage(stage, status, time.perf_counter() - start_time)

        return wrapper

    return decorator

#
# End of sync_metrics.py
############################################################################################################
