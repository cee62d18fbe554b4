import logging
import time
from typing import Dict


class ThrottledLogger:
    """ Wraps a logger so that each distinct message key is emitted at most once per period.

    Used for conditions that are re-checked every loop iteration, like waiting on data.
    """

    def __init__(self, logger: logging.Logger, period_sec: float = 1.0) -> None:
        self._logger = logger
        self._period_sec = period_sec
        self._last_emit: Dict[str, float] = {}

    def log(self, level: int, key: str, msg: str, *args) -> bool:
        now = time.monotonic()
        last = self._last_emit.get(key)
        if last is not None and now - last < self._period_sec:
            return False
        self._last_emit[key] = now
        self._logger.log(level, msg, *args)
        return True

    def info(self, key: str, msg: str, *args) -> bool:
        return self.log(logging.INFO, key, msg, *args)

    def warning(self, key: str, msg: str, *args) -> bool:
        return self.log(logging.WARNING, key, msg, *args)

    def reset(self) -> None:
        self._last_emit.clear()


def configure_logging(level: str = "INFO") -> None:
    """ Sets the level of the package's loggers, and attaches a stream handler when the
    application hasn't configured logging itself.
    """
    package_logger = logging.getLogger("lidar_deskew")
    package_logger.setLevel(getattr(logging, str(level).upper()))

    if not logging.getLogger().handlers and not package_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("[%(asctime)s] %(levelname)s %(name)s: %(message)s"))
        package_logger.addHandler(handler)
