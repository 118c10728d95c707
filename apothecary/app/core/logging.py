from __future__ import annotations

import logging
import sys

import structlog

from apothecary.app.core.config import LOG_JSON, LOG_LEVEL


def configure_logging(level: str = LOG_LEVEL, json: bool = LOG_JSON) -> None:
    """
    Configure structlog une seule fois au démarrage de l'app.
    - JSON en prod (LOG_JSON=1), rendu console sinon
    - les logs stdlib (uvicorn, sqlalchemy) passent par le même niveau
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)

    renderer = structlog.processors.JSONRenderer() if json else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        cache_logger_on_first_use=True,
    )
