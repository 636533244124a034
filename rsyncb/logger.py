"""Module containing utilities for logging, along with the rsyncb logger."""

import logging
from typing import Any, Optional


def _get_logger(name: Optional[str] = "rsyncb") -> logging.Logger:
    handler = logging.StreamHandler()

    # The pseudo-terminal of an ssh session may leave the local terminal in raw mode,
    # so lines need an explicit carriage return to render properly.
    handler.terminator = "\r\n"

    formatter = logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")
    handler.setFormatter(formatter)

    logger = logging.getLogger(name)
    logger.addHandler(handler)

    return logger


def summarize(obj: Any, max_length: int = 255, single_line: bool = False) -> str:
    """
    Return a stringified representation of the object up to the given length.

    Remote shell output spans many lines, so it can optionally be folded into a single
    line with escaped line breaks to keep log records readable.
    """
    stringified_obj = str(obj)

    if single_line:
        stringified_obj = stringified_obj.replace("\r", "\\r").replace("\n", "\\n")

    if len(stringified_obj) <= max_length:
        return stringified_obj
    else:
        return stringified_obj[: max_length - 3] + "..."


# Default logger
log = _get_logger()
