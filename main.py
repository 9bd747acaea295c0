from concurrent.futures import ThreadPoolExecutor
import random
import threading
from typing import Callable, Dict, List, Optional

from loguru import logger
from web3 import Web3

import settings
from accounts import WalletEntry, pair_wallets, read_lines
from config import RunConfig, load_config
from contracts import ContractRegistry, load_registry
from endpoints import EndpointPool
from errors import Cancelled, ConfigError
from gas_checker import GasChecker
from pacing import sleeping
from refill import Transfer, execute_plan, plan_refill
from status import StatusChecker, WalletState, WalletStatus, summarize
from wallet import Wallet

MODULES = {
    "Rubic swap": Wallet.run_rubic,
    "Magma staking": Wallet.run_magma,
    "aPriori staking": Wallet.run_apriori,
}


def split_groups(accounts: list, threads: int) -> List[list]:
    threads = max(1, min(threads, len(accounts)))
    group_size = len(accounts) // threads
    remainder = len(accounts) % threads

    groups = []
    start = 0
    for i in range(threads):
        # Add an extra account to some groups to distribute the remainder
        end = start + group_size + (1 if i < remainder else 0)
        groups.append(accounts[start:end])
        start = end
    return groups


class Runner:
    def __init__(
        self,
        config: RunConfig,
        registry: ContractRegistry,
        stop_event: threading.Event,
        pool_factory: Optional[Callable[[Optional[str]], EndpointPool]] = None,
    ):
        self.config = config
        self.registry = registry
        self.stop_event = stop_event
        self.pool_factory = pool_factory or self._default_pool
        self.checker = StatusChecker(
            registry,
            config.retry_policy,
            config.thresholds,
            log_scan_blocks=config.log_scan_blocks,
            stop_event=stop_event,
        )
        self.gas_checker = GasChecker(self.pool_factory(None), config.gas)

    def _default_pool(self, proxy: Optional[str]) -> EndpointPool:
        return EndpointPool.from_urls(self.config.rpc_urls, proxy=proxy, timeout=self.config.rpc_timeout)

    def new_wallet(self, entry: WalletEntry, pool: EndpointPool) -> Wallet:
        return Wallet(
            entry.private_key,
            pool,
            self.config.retry_policy,
            self.registry,
            self.config.gas,
            explorer=self.config.explorer,
            gas_checker=self.gas_checker,
            dry_run=self.config.dry_run,
            stop_event=self.stop_event,
        )

    def check_wallet(self, entry: WalletEntry) -> WalletStatus:
        logger.info(f"Checking wallet #{entry.index + 1}")
        return self.checker.check_status(entry.private_key, self.pool_factory(entry.proxy))

    def run_wallet(self, entry: WalletEntry) -> bool:
        pool = self.pool_factory(entry.proxy)
        status = self.checker.check_status(entry.private_key, pool)
        if status.status is not WalletState.OK:
            logger.warning(f"[{status.address}] Skipped, wallet status is {status.status.value}")
            return False

        wallet = self.new_wallet(entry, pool)
        modules = list(MODULES.items())
        random.shuffle(modules)
        logger.info(f"[{wallet.address}] Running modules: {' -> '.join(name for name, _ in modules)}")

        results = []
        for i, (name, module) in enumerate(modules):
            logger.info(f"[{wallet.address}] Starting {name}")
            results.append(module(wallet, self.config.amounts, self.config.operation_delay))
            if i < len(modules) - 1:
                sleeping(self.config.operation_delay.min_seconds, self.config.operation_delay.max_seconds, self.stop_event)
        return all(results)

    def run_thread_group(self, thread_group: List[WalletEntry], job: Callable, pause: bool) -> Dict[int, object]:
        results = {}
        for i, entry in enumerate(thread_group):
            results[entry.index] = job(entry)
            if pause and i < len(thread_group) - 1:
                sleeping(self.config.wallet_delay.min_seconds, self.config.wallet_delay.max_seconds, self.stop_event)
        return results

    def for_each(self, entries: List[WalletEntry], job: Callable, pause: bool = True) -> list:
        """Run ``job`` for every wallet, one by one unless more threads are configured.

        Each wallet gets its own EndpointPool, so threads never share one.
        """
        if not entries:
            return []

        if self.config.threads == 1:
            results = self.run_thread_group(entries, job, pause)
        else:
            results = {}
            executor = ThreadPoolExecutor(max_workers=self.config.threads)
            try:
                futures = [
                    executor.submit(self.run_thread_group, group, job, pause)
                    for group in split_groups(entries, self.config.threads)
                ]
                for future in futures:
                    results.update(future.result())
            except KeyboardInterrupt:
                self.stop_event.set()
                raise
            finally:
                executor.shutdown(wait=True, cancel_futures=True)

        return [results[entry.index] for entry in entries if entry.index in results]

    def check_all(self, entries: List[WalletEntry]) -> List[WalletStatus]:
        statuses = self.for_each(entries, self.check_wallet, pause=False)
        summary = summarize(statuses)
        logger.info(f"Wallets: {summary.wallets}")
        for state, count in summary.by_state.items():
            logger.info(f"{state.value}: {count}")
        logger.info(
            f"Total: {Web3.from_wei(summary.native_balance, 'ether')} MON + "
            f"{Web3.from_wei(summary.token_balance, 'ether')} WMON = "
            f"{Web3.from_wei(summary.total_balance, 'ether')}"
        )
        return statuses

    def run_all(self, entries: List[WalletEntry]) -> int:
        results = self.for_each(entries, self.run_wallet)
        logger.success(f"Modules finished on {sum(results)}/{len(entries)} wallets")
        return sum(results)

    def refill_all(self, entries: List[WalletEntry]) -> int:
        statuses = self.for_each(entries, self.check_wallet, pause=False)
        by_address = {status.address: entry for status, entry in zip(statuses, entries)}
        plan = plan_refill(statuses, self.config.thresholds.low_threshold, self.config.refill_reserve)
        if not plan:
            logger.info("Nothing to refill")
            return 0

        def send(transfer: Transfer) -> bool:
            entry = by_address[transfer.sender]
            wallet = self.new_wallet(entry, self.pool_factory(entry.proxy))
            return wallet.transfer(transfer.recipient, transfer.amount)

        done = execute_plan(plan, send)
        logger.success(f"Refilled {done}/{len(plan)} wallets")
        return done


def main(entries: List[WalletEntry], config: RunConfig, registry: ContractRegistry):
    stop_event = threading.Event()
    runner = Runner(config, registry, stop_event)

    mode = input("Enter 1 to check wallets, 2 to run modules, 3 to refill low wallets: ")

    try:
        if mode == "1":
            runner.check_all(entries)
        elif mode == "2":
            runner.run_all(entries)
        elif mode == "3":
            runner.refill_all(entries)
        else:
            logger.error(f"Unknown mode: {mode}")
    except KeyboardInterrupt:
        stop_event.set()
        logger.warning("Stopped by user")
    except Cancelled as error:
        logger.warning(f"Stopped: {error}")


if __name__ == "__main__":
    try:
        CONFIG = load_config(settings)
        ACCOUNTS = pair_wallets(
            read_lines(CONFIG.accounts_file),
            read_lines(CONFIG.proxies_file),
            shuffle=CONFIG.shuffle,
        )
        REGISTRY = load_registry(CONFIG.contracts_file)
    except (ConfigError, OSError) as error:
        logger.error(error)
        raise SystemExit(1)

    if CONFIG.log_file:
        logger.add(CONFIG.log_file, rotation="10 MB")
    if not ACCOUNTS:
        logger.error(f"No wallets found in {CONFIG.accounts_file}")
        raise SystemExit(1)
    if not read_lines(CONFIG.proxies_file):
        logger.warning("You dont use proxies!")

    main(ACCOUNTS, CONFIG, REGISTRY)
