import threading
import time
from typing import Callable, Optional

from loguru import logger
from web3 import Web3
from web3.exceptions import TransactionNotFound, Web3RPCError

from contracts import ContractRegistry
from endpoints import EndpointPool
from errors import Cancelled
from gas_checker import GasChecker, GasSettings
from pacing import AmountRange, DelayRange, random_amount, sleeping
from retry import ErrorKind, RetryPolicy, classify_error, execute, execute_with_failover

TRANSFER_GAS = 21000
ALREADY_SENT_MARKERS = ("already known", "known transaction", "nonce too low")


class Wallet:
    """One private key and the dapp operations it can run.

    Every operation returns True on a confirmed transaction and False on any
    failure, so one bad wallet never stops a batch. ``Cancelled`` is the only
    exception that leaves an operation.
    """

    def __init__(
        self,
        private_key: str,
        pool: EndpointPool,
        policy: RetryPolicy,
        registry: ContractRegistry,
        gas: GasSettings,
        explorer: str = "",
        gas_checker: Optional[GasChecker] = None,
        dry_run: bool = False,
        stop_event: Optional[threading.Event] = None,
    ):
        self.pool = pool
        self.policy = policy
        self.registry = registry
        self.gas = gas
        self.explorer = explorer
        self.gas_checker = gas_checker
        self.dry_run = dry_run
        self.stop_event = stop_event

        self.private_key = private_key
        self.address = self.w3.eth.account.from_key(private_key).address

    @property
    def w3(self) -> Web3:
        return self.pool.client()

    def get_balance(self) -> int:
        return execute_with_failover(
            lambda w3: w3.eth.get_balance(self.address), self.pool, self.policy, self.stop_event, f"[{self.address}] balance"
        )

    def tx_data(self, w3: Web3, value: int = 0, gas: Optional[int] = None) -> dict:
        return {
            "chainId": w3.eth.chain_id,
            "from": self.address,
            "value": value,
            "nonce": w3.eth.get_transaction_count(self.address),
            "gasPrice": int(w3.eth.gas_price * self.gas.multiplier),
            "gas": gas or self.gas.gas_limit,
        }

    def send_tx(self, name: str, build: Callable[[Web3], dict]) -> bool:
        try:
            tx = execute_with_failover(build, self.pool, self.policy, self.stop_event, f"[{self.address}] build {name}")

            if self.dry_run:
                logger.info(f"[{self.address}] [dry-run] {name} not sent: to={tx.get('to')} value={tx.get('value')} data={tx.get('data', '0x')}")
                return True

            if self.gas_checker:
                self.gas_checker.wait_gas(self.stop_event)

            signed_tx = self.w3.eth.account.sign_transaction(tx, self.private_key)
            tx_hash = Web3.to_hex(signed_tx.hash)
            self.broadcast(name, signed_tx.raw_transaction)
            logger.info(f"[{self.address}] {name} sent: {self.explorer}{tx_hash}")

            return self.wait_until_tx_finished(tx_hash)
        except Cancelled:
            raise
        except Exception as err:
            logger.error(f"[{self.address}] {name} ERROR on {self.pool.current().label} | {err}")
        return False

    def wait_until_tx_finished(self, hash: str, max_wait_time=180) -> bool:
        start_time = time.time()
        while True:
            if self.stop_event is not None and self.stop_event.is_set():
                raise Cancelled(f"Stopped while waiting for {hash}")
            try:
                receipts = self.w3.eth.get_transaction_receipt(hash)
                status = receipts.get("status")
                if status == 1:
                    logger.success(f"[{self.address}] {self.explorer}{hash} successfully!")
                    return True
                elif status is None:
                    time.sleep(0.3)
                else:
                    logger.error(f"[{self.address}] {self.explorer}{hash} transaction failed!")
                    return False
            except TransactionNotFound:
                if time.time() - start_time > max_wait_time:
                    logger.error(f"[{self.address}] FAILED TX: {hash}")
                    return False
                time.sleep(1)
            except Exception as error:
                if classify_error(error) is not ErrorKind.TRANSIENT:
                    raise
                if time.time() - start_time > max_wait_time:
                    logger.error(f"[{self.address}] FAILED TX: {hash}, receipt unavailable: {error}")
                    return False
                logger.warning(f"[{self.address}] Receipt for {hash} unavailable, polling again: {error}")
                time.sleep(1)

    def broadcast(self, name: str, raw_tx: bytes) -> None:
        """Send a signed transaction, retrying transient errors.

        When a retry is rejected as already known or with a stale nonce, an
        earlier attempt reached the node, so the caller goes on to wait for the
        receipt instead of failing.
        """
        attempts = 0

        def send():
            nonlocal attempts
            attempts += 1
            return self.w3.eth.send_raw_transaction(raw_tx)

        try:
            execute(send, self.policy, self.stop_event, f"[{self.address}] send {name}")
        except Web3RPCError as error:
            message = str(error).lower()
            if attempts < 2 or not any(marker in message for marker in ALREADY_SENT_MARKERS):
                raise
            logger.warning(f"[{self.address}] {name} reached the node on an earlier attempt: {error}")

    def wrap(self, amount: int) -> bool:
        logger.info(f"[{self.address}] Wrapping {Web3.from_wei(amount, 'ether')} MON into WMON")
        return self.send_tx(
            "wrap",
            lambda w3: self.registry.contract(w3, "wmon").functions.deposit().build_transaction(self.tx_data(w3, value=amount)),
        )

    def unwrap(self, amount: int) -> bool:
        logger.info(f"[{self.address}] Unwrapping {Web3.from_wei(amount, 'ether')} WMON back to MON")
        return self.send_tx(
            "unwrap",
            lambda w3: self.registry.contract(w3, "wmon").functions.withdraw(amount).build_transaction(self.tx_data(w3)),
        )

    def approve(self, token: str, spender: str, amount: int) -> bool:
        logger.info(f"[{self.address}] Approving {token} for {spender}")
        return self.send_tx(
            f"approve {token}",
            lambda w3: w3.eth.contract(address=self.registry.get(token).address, abi=self.registry.abi("erc20"))
            .functions.approve(Web3.to_checksum_address(spender), amount)
            .build_transaction(self.tx_data(w3)),
        )

    def stake_magma(self, amount: int) -> bool:
        logger.info(f"[{self.address}] Staking {Web3.from_wei(amount, 'ether')} MON in Magma")

        def build(w3: Web3) -> dict:
            magma = self.registry.get("magma")
            return {**self.tx_data(w3, value=amount), "to": magma.address, "data": magma.selectors["stake"]}

        return self.send_tx("magma stake", build)

    def stake_apriori(self, amount: int) -> bool:
        logger.info(f"[{self.address}] Staking {Web3.from_wei(amount, 'ether')} MON in aPriori")
        return self.send_tx(
            "apriori stake",
            lambda w3: self.registry.contract(w3, "apriori")
            .functions.deposit(amount, self.address)
            .build_transaction(self.tx_data(w3, value=amount)),
        )

    def transfer(self, to: str, amount: int) -> bool:
        logger.info(f"[{self.address}] Sending {Web3.from_wei(amount, 'ether')} MON to {to}")
        return self.send_tx(
            "transfer",
            lambda w3: {**self.tx_data(w3, value=amount, gas=TRANSFER_GAS), "to": Web3.to_checksum_address(to)},
        )

    def run_rubic(self, amounts: AmountRange, delay: DelayRange) -> bool:
        amount = random_amount(amounts.min_amount, amounts.max_amount)
        if not self.wrap(amount):
            return False
        sleeping(delay.min_seconds, delay.max_seconds, self.stop_event)
        return self.unwrap(amount)

    def run_magma(self, amounts: AmountRange, delay: DelayRange) -> bool:
        return self.stake_magma(random_amount(amounts.min_amount, amounts.max_amount))

    def run_apriori(self, amounts: AmountRange, delay: DelayRange) -> bool:
        return self.stake_apriori(random_amount(amounts.min_amount, amounts.max_amount))
