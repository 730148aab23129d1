import logging
import sys
from typing import Optional

# per-event loggers (tracked, deduped, throttled, allocated)
ENGAGEMENT_LOGGERS = ("backend.engagement",)


def _level(name: str) -> int:
    return getattr(logging, name.upper(), logging.INFO)


def setup_logging(level: str = "INFO", engagement_level: Optional[str] = None) -> None:
    logging.basicConfig(
        level=_level(level),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )

    # every tracked event is a request, the access log drowns everything else
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    if engagement_level:
        for name in ENGAGEMENT_LOGGERS:
            logging.getLogger(name).setLevel(_level(engagement_level))
