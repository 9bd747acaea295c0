from dataclasses import dataclass
from typing import List, Optional

from web3 import Web3

from errors import ConfigError
from gas_checker import GasSettings
from pacing import AmountRange, DelayRange
from retry import RetryPolicy
from status import BalanceThresholds


@dataclass(frozen=True)
class RunConfig:
    rpc_urls: List[str]
    explorer: str
    rpc_timeout: float
    contracts_file: str
    retry_policy: RetryPolicy
    thresholds: BalanceThresholds
    log_scan_blocks: int
    operation_delay: DelayRange
    wallet_delay: DelayRange
    amounts: AmountRange
    gas: GasSettings
    refill_reserve: int
    threads: int
    shuffle: bool
    dry_run: bool
    accounts_file: str
    proxies_file: str
    log_file: Optional[str]


def load_config(source) -> RunConfig:
    """Validate the constants of a settings module into a RunConfig."""
    try:
        rpc_urls = list(source.RPC_URLS)
        if not rpc_urls:
            raise ValueError("RPC_URLS is empty")
        threads = int(getattr(source, "THREADS", 1))
        if threads < 1:
            raise ValueError(f"THREADS must be >= 1, got {threads}")
        log_scan_blocks = int(getattr(source, "LOG_SCAN_BLOCKS", 100))
        if log_scan_blocks < 0:
            raise ValueError(f"LOG_SCAN_BLOCKS must be >= 0, got {log_scan_blocks}")

        return RunConfig(
            rpc_urls=rpc_urls,
            explorer=getattr(source, "EXPLORER", ""),
            rpc_timeout=getattr(source, "RPC_TIMEOUT", 30),
            contracts_file=getattr(source, "CONTRACTS_FILE", "contracts.json"),
            retry_policy=RetryPolicy(
                max_attempts=source.RETRY,
                retry_delay=source.RETRY_DELAY,
                deadline=getattr(source, "RETRY_DEADLINE", None),
            ),
            thresholds=BalanceThresholds(
                insufficient_floor=Web3.to_wei(str(source.INSUFFICIENT_BALANCE), "ether"),
                low_threshold=Web3.to_wei(str(source.MIN_BALANCE), "ether"),
            ),
            log_scan_blocks=log_scan_blocks,
            operation_delay=DelayRange(source.MIN_SLEEP, source.MAX_SLEEP),
            wallet_delay=DelayRange(*source.SLEEP_BETWEEN_WALLETS),
            amounts=AmountRange(source.MIN_AMOUNT, source.MAX_AMOUNT),
            gas=GasSettings(
                gas_limit=source.GAS_LIMIT,
                multiplier=source.GAS_MULTIPLIER,
                check_gwei=getattr(source, "CHECK_GWEI", False),
                max_gwei=getattr(source, "MAX_GWEI", 100),
            ),
            refill_reserve=Web3.to_wei(str(getattr(source, "REFILL_RESERVE", 0)), "ether"),
            threads=threads,
            shuffle=getattr(source, "SHUFFLE_ACCOUNTS", False),
            dry_run=getattr(source, "DRY_RUN", False),
            accounts_file=getattr(source, "ACCOUNTS_FILE", "accounts.txt"),
            proxies_file=getattr(source, "PROXIES_FILE", "proxies.txt"),
            log_file=getattr(source, "LOG_FILE", None),
        )
    except (AttributeError, TypeError, ValueError) as error:
        raise ConfigError(f"Invalid settings: {error}") from error
