import logging
import sys

# Third-party loggers that are chatty at INFO.
_NOISY = ("discord", "discord.client", "discord.gateway", "httpx")


def setup_logging(level: int | str = logging.INFO) -> logging.Logger:
    """Configure the ``dispatch_bot`` logger once and return it.

    Every module logs through ``logging.getLogger(__name__)`` so one handler
    on the package logger covers the store, the reconciler and the bot.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logger = logging.getLogger("dispatch_bot")
    if logger.handlers:
        return logger  # already configured
    logger.setLevel(level)
    handler = logging.StreamHandler(sys.stdout)
    fmt = logging.Formatter("[%(asctime)s] %(levelname)s %(name)s: %(message)s")
    handler.setFormatter(fmt)
    logger.addHandler(handler)
    # reduce library noise unless debugging
    for name in _NOISY:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
    return logger
