import logging
import sys

logger = logging.getLogger("recommender")

_FORMAT = "[%(levelname)s] %(asctime)s %(name)s - %(message)s"


def configure_logging(level: str = "INFO") -> logging.Logger:
    """Attach a console handler to the ``recommender`` logger once."""
    logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    if not any(getattr(h, "_recommender", False) for h in logger.handlers):
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(logging.Formatter(_FORMAT, "%Y-%m-%d %H:%M:%S"))
        console_handler._recommender = True
        logger.addHandler(console_handler)
    return logger
