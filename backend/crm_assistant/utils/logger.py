import logging
import sys
import json
from datetime import datetime, timezone

from .config import settings

# Request context passed through `extra=` and surfaced as top-level JSON keys
CONTEXT_FIELDS = ("user_id", "operation", "rule")

# Chatty client libraries are capped at WARNING
QUIET_LOGGERS = ("httpx", "httpcore", "google_genai", "urllib3")

class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_data[field] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data)

def setup_logger(name: str, level: int = logging.INFO, json_output: bool = False) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.handlers = []

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)

    if json_output:
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.propagate = False

    for noisy in QUIET_LOGGERS:
        logging.getLogger(noisy).setLevel(max(level, logging.WARNING))

    return logger

logger = setup_logger(
    "crm_assistant",
    level=logging.getLevelName(settings.log_level.upper()),
    json_output=settings.log_format.lower() == "json"
)
