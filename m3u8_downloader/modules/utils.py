import re
import time
import logging

from typing import Callable, TypeVar

T = TypeVar("T")
URL_PATTERN = re.compile(r"^https?://", re.IGNORECASE)


def is_url(uri: str) -> bool:
    return bool(URL_PATTERN.match(uri))


def retry(fn: Callable[[], T], retries: int = 3, delay: float = 1.0, logger: logging.Logger = None) -> T:
    """
    Calls fn until it succeeds, at most retries + 1 times, sleeping a fixed delay in between.
    The last exception is raised if every attempt failed.
    """
    attempt = 0
    while True:
        try:
            return fn()

        except Exception as e:
            if attempt >= retries:
                raise

            attempt += 1
            if logger is not None:
                logger.debug(f"Attempt {attempt}/{retries} failed: {e}. Retrying in {delay}s...")

            time.sleep(delay)


def str_to_bool(value):
    """
    Maps the string values of boolean command line options to real booleans.
    """
    if value.lower() in ("true", "1", "yes"):
        return True

    elif value.lower() in ("false", "0", "no"):
        return False

    raise ValueError(f"Not a boolean value: {value!r}")
