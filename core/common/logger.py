# common/logger.py
import sys
import time
from loguru import logger
from core.common.config import LOG_LEVEL, LOG_FILE

# Remove the default handler to customize our logging format
logger.remove()

logger.add(
    sys.stdout,
    format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
           "<level>{level: <8}</level> | "
           "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
           "<level>{message}</level>",
    level=LOG_LEVEL
)

if LOG_FILE:
    logger.add(
        LOG_FILE,
        rotation="5 MB",
        retention="7 days",
        level=LOG_LEVEL,
        compression="zip",
        format="{time:YYYY-MM-DD HH:mm:ss} | "
               "{level: <8} | "
               "{name}:{function}:{line} - {message}"
    )


class ErrorRateLimiter:
    """Simple rate limiter for repeated log lines to prevent spam."""

    def __init__(self, interval_seconds: float = 60):
        self.interval = interval_seconds
        self.last_logged = {}

    def should_log(self, key: str) -> bool:
        """Check if a message keyed by `key` should be logged based on rate limit."""
        current_time = time.monotonic()
        last_time = self.last_logged.get(key)

        if last_time is None or current_time - last_time >= self.interval:
            self.last_logged[key] = current_time
            return True
        return False


if __name__ == "__main__":
    logger.bind(component="logger").info("Logger initialized successfully.")
