from collections import Counter
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import logging
import os
import sys

import structlog

from recall_agent.infrastructure.config.settings import LoggingSettings


# Libraries that log every HTTP round trip at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "openai", "langfuse", "uvicorn.access")


def setup_logging(settings: Optional[LoggingSettings] = None) -> None:
    """Configure structlog on top of stdlib logging"""

    settings = settings or LoggingSettings()
    level = getattr(logging, settings.level.upper(), logging.INFO)

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    processors: List[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        drop_empty_fields,
    ]
    if settings.format == "json":
        processors.append(structlog.processors.JSONRenderer(default=str))
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.bind_contextvars(
        service=settings.service_name,
        environment=os.getenv("ENVIRONMENT", "development"),
    )


def drop_empty_fields(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Remove keys whose value is None"""
    return {key: value for key, value in event_dict.items() if value is not None}


class TurnEventLogger:
    """Structured events emitted while a turn runs"""

    def __init__(self, name: str):
        self.logger = structlog.get_logger(name)

    def stage(self, stage: str, session_id: Optional[str], duration_ms: float, error: Optional[str] = None):
        if error is None:
            self.logger.info("stage_completed", stage=stage, session_id=session_id, duration_ms=round(duration_ms, 2))
        else:
            self.logger.warning(
                "stage_failed", stage=stage, session_id=session_id, duration_ms=round(duration_ms, 2), error=error
            )

    def tool_call(self, record: Any, session_id: Optional[str]):
        """Log a ToolExecutionRecord once the call has finished"""

        self.logger.info(
            "tool_call",
            provider=record.provider,
            tool=record.tool,
            session_id=session_id,
            args=record.args,
            duration_ms=record.duration_ms,
            success=record.success,
            error=record.error
        )

    def transition(self, session_id: Optional[str], source: str, target: str, condition: Optional[str] = None):
        self.logger.debug("stage_transition", session_id=session_id, source=source, target=target, condition=condition)

    def memory(self, session_id: Optional[str], action: str, **details: Any):
        self.logger.info("memory_event", session_id=session_id, action=action, **details)


turn_events = TurnEventLogger("recall_agent.turn")


@dataclass
class LatencyStats:
    count: int = 0
    total_ms: float = 0.0
    min_ms: Optional[float] = None
    max_ms: float = 0.0

    def add(self, duration_ms: float):
        self.count += 1
        self.total_ms += duration_ms
        self.min_ms = duration_ms if self.min_ms is None else min(self.min_ms, duration_ms)
        self.max_ms = max(self.max_ms, duration_ms)

    def summary(self) -> Dict[str, float]:
        return {
            "count": self.count,
            "avg": self.total_ms / self.count if self.count else 0.0,
            "min": self.min_ms or 0.0,
            "max": self.max_ms,
        }


class MetricsCollector:
    """In-process counters and latency stats, mirrored to debug logs"""

    def __init__(self):
        self.counters: Counter = Counter()
        self.latencies: Dict[str, LatencyStats] = {}
        self._logger = structlog.get_logger("recall_agent.metrics")

    def record_latency(self, operation: str, duration_ms: float, tags: Optional[Dict[str, str]] = None):
        self.latencies.setdefault(operation, LatencyStats()).add(duration_ms)
        self._logger.debug("metric", kind="latency", operation=operation, duration_ms=duration_ms, tags=tags)

    def increment_counter(self, name: str, value: int = 1, tags: Optional[Dict[str, str]] = None):
        self.counters[name] += value
        self._logger.debug("metric", kind="counter", name=name, value=value, tags=tags)

    def get_metrics_summary(self) -> Dict[str, Any]:
        """Counters by name plus ``latency.<operation>`` stats"""

        summary: Dict[str, Any] = dict(self.counters)
        for operation, stats in self.latencies.items():
            summary[f"latency.{operation}"] = stats.summary()
        return summary

    def reset(self):
        self.counters.clear()
        self.latencies.clear()


metrics = MetricsCollector()
