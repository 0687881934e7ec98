"""
Structured logging configuration using structlog.

Produces JSON logs in production, human-readable colored logs in development.
Pipeline modules log through the stdlib ``logging`` module; this routes those
records through structlog's formatter.
"""

import logging
import sys
from typing import Any, Dict, Optional

import structlog

from .config import settings

# executor-bound context vars and their names under the ``tx`` key
TRANSACTION_FIELDS = {"tx_id": "id", "user_id": "user_id", "chain_id": "chain_id"}


def group_transaction_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Move the bound transaction fields into one ``tx`` object.

    Only applies inside an execution (``tx_id`` bound); other records keep
    their fields as logged.
    """
    if "tx_id" not in event_dict:
        return event_dict
    event_dict["tx"] = {
        name: event_dict.pop(key) for key, name in TRANSACTION_FIELDS.items() if key in event_dict
    }
    return event_dict


def setup_logging(log_level: Optional[str] = None) -> None:
    """Configure structlog for structured JSON logging.

    Args:
        log_level: Override log level (default: from settings.log_level)
    """
    level = getattr(logging, (log_level or settings.log_level).upper(), logging.INFO)
    is_dev = level == logging.DEBUG

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        group_transaction_context,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if is_dev:
        renderer = structlog.dev.ConsoleRenderer()
    else:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    # Quiet noisy third-party loggers
    for name in ("httpcore", "httpx", "aiosqlite"):
        logging.getLogger(name).setLevel(logging.WARNING)
