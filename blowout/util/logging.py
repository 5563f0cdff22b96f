import logging
from typing import Optional, Union

APP_LOGGER = "blowout"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"


def setup_logging(level: Union[int, str] = logging.INFO) -> logging.Logger:
    """Attach a stderr handler to the ``blowout`` logger once and set its level.

    ``level`` may be a number or a name such as ``"debug"`` from the config.
    """
    logger = logging.getLogger(APP_LOGGER)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    if isinstance(level, str):
        level = level.upper()
    logger.setLevel(level)
    return logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    base = logging.getLogger(APP_LOGGER)
    return base if name is None else base.getChild(name)
