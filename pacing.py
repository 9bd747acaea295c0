import random
import threading
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from loguru import logger
from web3 import Web3

from errors import Cancelled


def _check_range(low, high, what: str):
    if low < 0 or high < 0:
        raise ValueError(f"{what} bounds must be >= 0, got [{low}, {high}]")
    if low > high:
        raise ValueError(f"{what} min {low} is greater than max {high}")


@dataclass(frozen=True)
class DelayRange:
    min_seconds: float
    max_seconds: float

    def __post_init__(self):
        _check_range(self.min_seconds, self.max_seconds, "Delay")

    def pick(self) -> float:
        return random.uniform(self.min_seconds, self.max_seconds)


@dataclass(frozen=True)
class AmountRange:
    min_amount: float
    max_amount: float

    def __post_init__(self):
        _check_range(self.min_amount, self.max_amount, "Amount")


def sleeping(min_seconds: float, max_seconds: float, stop_event: Optional[threading.Event] = None) -> float:
    """Block for a random duration in [min_seconds, max_seconds].

    The range is validated before anything waits. When ``stop_event`` is set
    during the wait, ``Cancelled`` is raised instead of finishing the sleep.
    Returns the chosen duration.
    """
    sleep_time = DelayRange(min_seconds, max_seconds).pick()
    logger.info(f"Sleeping for {sleep_time:.1f} seconds")

    if stop_event is None:
        time.sleep(sleep_time)
    elif stop_event.wait(sleep_time):
        raise Cancelled("Stopped while sleeping")

    logger.debug("Delay completed")
    return sleep_time


def random_amount(min_amount: float, max_amount: float, decimals: int = 4) -> int:
    """Random native amount in [min_amount, max_amount], rounded, in wei."""
    AmountRange(min_amount, max_amount)
    amount = round(random.uniform(min_amount, max_amount), decimals)
    amount = min(max(amount, min_amount), max_amount)
    return Web3.to_wei(Decimal(str(amount)), "ether")
