import logging
import sys
from typing import Any, MutableMapping, Tuple

from shared.settings import settings

# One stdout handler for the whole process, level from settings
logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)

# httpx logs every request at INFO; keep that for DEBUG runs only
if settings.LOG_LEVEL.upper() != "DEBUG":
    logging.getLogger("httpx").setLevel(logging.WARNING)


class RFQLoggerAdapter(logging.LoggerAdapter):
    """Prefixes every message with the RFQ it concerns."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        return f"[rfq={self.extra['rfq_id']}] {msg}", kwargs


def get_logger(name: str) -> logging.Logger:
    """Returns a configured logger instance."""
    return logging.getLogger(name)


def rfq_logger(logger: logging.Logger, rfq_id: str) -> RFQLoggerAdapter:
    return RFQLoggerAdapter(logger, {"rfq_id": rfq_id})
