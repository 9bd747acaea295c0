import threading
import time
from dataclasses import dataclass
from typing import Optional

from loguru import logger
from web3 import Web3

from endpoints import EndpointPool
from errors import Cancelled

CHECK_INTERVAL = 60


@dataclass(frozen=True)
class GasSettings:
    gas_limit: int = 500000
    multiplier: float = 1.2
    check_gwei: bool = False
    max_gwei: float = 100

    def __post_init__(self):
        if self.gas_limit <= 0:
            raise ValueError(f"gas_limit must be > 0, got {self.gas_limit}")
        if self.multiplier < 1:
            raise ValueError(f"multiplier must be >= 1, got {self.multiplier}")


class GasChecker:
    """Blocks senders while the network gas price is above ``max_gwei``.

    One reading is shared by all threads for ``CHECK_INTERVAL`` seconds.
    """

    def __init__(self, pool: EndpointPool, settings: GasSettings):
        self.pool = pool
        self.settings = settings
        self.last_check = None
        self.last_gas = None
        self.lock = threading.Lock()

    def get_gas(self) -> float:
        try:
            gas_price = self.pool.client().eth.gas_price
            return float(Web3.from_wei(gas_price, "gwei"))
        except Exception as error:
            logger.error(f"Gas price unavailable from {self.pool.current().label}: {error}")
        return float("inf")

    def wait_gas(self, stop_event: Optional[threading.Event] = None) -> None:
        if not self.settings.check_gwei:
            return

        with self.lock:
            while True:
                if self.last_check is None or time.time() - self.last_check >= CHECK_INTERVAL:
                    self.last_gas = self.get_gas()
                    self.last_check = time.time()

                if self.last_gas <= self.settings.max_gwei:
                    return

                logger.info(f"Current GWEI: {self.last_gas} > {self.settings.max_gwei}")
                if stop_event is None:
                    time.sleep(CHECK_INTERVAL)
                elif stop_event.wait(CHECK_INTERVAL):
                    raise Cancelled("Stopped while waiting for gas")
