import structlog
import logging
import sys
from typing import Dict, Any, Optional
from datetime import datetime, timezone
import os


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    service_name: str = "octto"
) -> None:
    """Setup structured logging configuration"""

    # Configure Python logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, log_level.upper(), logging.INFO)
    )

    # Processors for structlog
    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        add_service_context,
    ]

    # Add appropriate renderer based on format
    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    # Configure structlog
    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Set service name in context
    structlog.contextvars.bind_contextvars(
        service=service_name,
        environment=os.getenv("ENVIRONMENT", "development"),
    )


def add_service_context(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add bound context (service, brainstorm session) to every entry"""

    if "timestamp" not in event_dict:
        event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()

    context = structlog.contextvars.get_contextvars()
    for key in ("service", "environment", "brainstorm_id"):
        if key in context and key not in event_dict:
            event_dict[key] = context[key]

    return event_dict


class SessionEventLogger:
    """Specialized logger for question and branch lifecycle events"""

    def __init__(self, name: str):
        self.logger = structlog.get_logger(name)

    def log_question_event(
        self,
        event_type: str,
        session_id: str,
        question_id: str,
        **kwargs
    ):
        """Log a question lifecycle event (pushed, answered, cancelled, timeout)"""

        self.logger.info(
            "question_event",
            event_type=event_type,
            session_id=session_id,
            question_id=question_id,
            **kwargs
        )

    def log_branch_transition(
        self,
        session_id: str,
        branch_id: str,
        action: str,
        reason: Optional[str] = None,
        state_summary: Optional[Dict[str, Any]] = None
    ):
        """Log a branch decision (follow-up, wait, complete)"""

        self.logger.info(
            "branch_transition",
            session_id=session_id,
            branch_id=branch_id,
            action=action,
            reason=reason,
            state_summary=state_summary or {}
        )


# Global logger instance
session_logger = SessionEventLogger("octto")


class MetricsCollector:
    """
    In-process counters and wait latencies for one coordinator.

    Latencies are kept as running aggregates per operation, so memory stays
    flat however long the coordinator lives. Every sample is also logged at
    debug level.
    """

    def __init__(self):
        self.counters: Dict[str, int] = {}
        self.latencies: Dict[str, Dict[str, float]] = {}

    def record_latency(self, operation: str, duration_ms: float, tags: Optional[Dict[str, str]] = None):
        """Record how long a blocking call waited"""

        stats = self.latencies.setdefault(
            operation, {"count": 0, "sum": 0.0, "min": float("inf"), "max": 0.0}
        )
        stats["count"] += 1
        stats["sum"] += duration_ms
        stats["min"] = min(stats["min"], duration_ms)
        stats["max"] = max(stats["max"], duration_ms)

        session_logger.logger.debug(
            "metric",
            metric_type="latency",
            operation=operation,
            duration_ms=round(duration_ms, 3),
            tags=tags or {}
        )

    def increment_counter(self, name: str, value: int = 1, tags: Optional[Dict[str, str]] = None):
        self.counters[name] = self.counters.get(name, 0) + value
        session_logger.logger.debug(
            "metric",
            metric_type="counter",
            name=name,
            value=value,
            tags=tags or {}
        )

    def get_metrics_summary(self) -> Dict[str, Any]:
        """Counters as-is; latencies as count/avg/min/max under ``latency.<operation>``"""

        summary: Dict[str, Any] = dict(self.counters)
        for operation, stats in self.latencies.items():
            summary[f"latency.{operation}"] = {
                "count": stats["count"],
                "avg": stats["sum"] / stats["count"],
                "min": stats["min"],
                "max": stats["max"],
            }
        return summary
