import logging
import sys

from config import Config

_LOGGER_NAME = "salon"
_configured = False


def get_logger(name: str = _LOGGER_NAME) -> logging.Logger:
    """Return a logger under the app's "salon" logger, configuring its handler on first use."""
    global _configured
    if not _configured:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s - %(message)s")
        )
        base = logging.getLogger(_LOGGER_NAME)
        base.addHandler(handler)
        base.setLevel(Config.LOG_LEVEL.upper())
        base.propagate = False
        _configured = True
    if name == _LOGGER_NAME or name.startswith(_LOGGER_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{_LOGGER_NAME}.{name}")
