import logging

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Attach one stream handler to the package logger (idempotent)."""
    logger = logging.getLogger("grant_engine")
    if not any(getattr(h, "_grant_engine", False) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._grant_engine = True
        logger.addHandler(handler)
    logger.setLevel(level.upper())
