"""Monitoring, logging, and error tracking utilities"""
import json
import logging
import threading
import traceback
from datetime import datetime, timezone
from typing import Dict, Any, Optional
from functools import wraps
import time

# Configure structured logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(),
    ]
)

logger = logging.getLogger("nudges")


def _json_default(value: Any) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


class StructuredLogger:
    """Structured JSON logging"""

    @staticmethod
    def log_event(
        event_type: str,
        message: str,
        user_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        level: str = "INFO"
    ):
        """Log structured event"""
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": event_type,
            "message": message,
            "level": level,
        }

        if user_id:
            log_data["user_id"] = user_id

        if metadata:
            log_data["metadata"] = metadata

        log_message = json.dumps(log_data, default=_json_default)

        if level == "ERROR":
            logger.error(log_message)
        elif level == "WARNING":
            logger.warning(log_message)
        elif level == "DEBUG":
            logger.debug(log_message)
        else:
            logger.info(log_message)

    @staticmethod
    def log_error(
        error: Exception,
        context: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None
    ):
        """Log error with full context"""
        StructuredLogger.log_event(
            event_type="error",
            message=str(error),
            user_id=user_id,
            metadata={
                "error_type": type(error).__name__,
                "traceback": traceback.format_exc(),
                "context": context or {},
            },
            level="ERROR"
        )


class NudgeRunMetrics:
    """Track notification processor runs"""

    def __init__(self):
        self._lock = threading.Lock()
        self.metrics: Dict[str, Any] = {
            "total_runs": 0,
            "failed_runs": 0,
            "total_processed": 0,
            "total_notified": 0,
            "run_durations": [],
            "last_run": None,
            "last_result": None,
        }

    def record_run(self, success: bool, duration: float, result: Optional[Dict[str, Any]] = None):
        """Record one processor invocation"""
        with self._lock:
            self.metrics["total_runs"] += 1
            if not success:
                self.metrics["failed_runs"] += 1
            if result:
                self.metrics["total_processed"] += result.get("processed", 0)
                self.metrics["total_notified"] += result.get("notified", 0)
                self.metrics["last_result"] = result

            self.metrics["run_durations"].append(duration)
            self.metrics["last_run"] = datetime.now(timezone.utc).isoformat()

            # Keep only last 100 durations
            if len(self.metrics["run_durations"]) > 100:
                self.metrics["run_durations"] = self.metrics["run_durations"][-100:]

    def get_avg_duration(self) -> float:
        """Calculate average run duration in seconds"""
        if not self.metrics["run_durations"]:
            return 0.0
        return sum(self.metrics["run_durations"]) / len(self.metrics["run_durations"])

    def get_metrics(self) -> Dict[str, Any]:
        """Get all metrics"""
        with self._lock:
            snapshot = {k: v for k, v in self.metrics.items() if k != "run_durations"}
        return {
            **snapshot,
            "avg_run_duration": self.get_avg_duration(),
        }


# Global metrics instance
nudge_run_metrics = NudgeRunMetrics()


def track_nudge_run(func):
    """Decorator to record processor run timing and outcome"""
    @wraps(func)
    def wrapper(*args, **kwargs):
        start_time = time.monotonic()
        success = False
        result = None

        try:
            result = func(*args, **kwargs)
            success = True
            return result
        except Exception as e:
            StructuredLogger.log_error(e, context={"function": func.__name__})
            raise
        finally:
            summary = result.model_dump() if hasattr(result, "model_dump") else None
            nudge_run_metrics.record_run(success, time.monotonic() - start_time, summary)

    return wrapper
