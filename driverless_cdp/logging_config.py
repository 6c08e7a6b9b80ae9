import logging
import os

_LOGGER_NAME = "driverless_cdp"
_FORMAT = "%(levelname)-8s [%(name)s] %(message)s"


def setup_logging(level: str | int | None = None) -> logging.Logger:
    """Attach a stream handler to the package logger.

    Level comes from ``level``, else ``DRIVERLESS_LOGGING_LEVEL``, else INFO.
    Safe to call more than once.
    """
    if level is None:
        level = os.getenv("DRIVERLESS_LOGGING_LEVEL", "info")
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logger = logging.getLogger(_LOGGER_NAME)
    logger.setLevel(level)
    if not any(getattr(h, "_driverless", False) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT))
        handler._driverless = True  # type: ignore[attr-defined]
        logger.addHandler(handler)
    logger.propagate = False

    for noisy in ("aiohttp", "httpx", "httpcore", "asyncio"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
    return logger
