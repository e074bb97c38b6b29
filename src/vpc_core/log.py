"""Application logging setup.

Components log through module loggers under the `vpc_core` namespace
(`vpc_core.clock`, `vpc_core.programs`, ...). This is the application log;
the kernel trace shown next to the registers is kept separately in
KernelLog values owned by the clock driver.
"""

import logging
import sys
from pathlib import Path
from typing import Optional


LOG_FORMAT = "%(asctime)s.%(msecs)03d [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%H:%M:%S"


def setup_logging(
    level: int = logging.INFO,
    log_file: Optional[str] = None,
    name: str = "vpc_core",
) -> logging.Logger:
    """Configure and return the package logger.

    Args:
        level: Console log level
        log_file: Optional path for a DEBUG-level file log
        name: Logger to configure

    Returns:
        The configured logger
    """
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(level)
    console.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
    logger.addHandler(console)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(str(path), encoding="utf-8")
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
        logger.addHandler(fh)

    logger.propagate = False
    logger.debug("Logger initialized: %s", name)
    return logger
