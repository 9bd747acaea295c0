"""Top up LOW and INSUFFICIENT wallets from wallets that have MON to spare."""

from dataclasses import dataclass
from typing import Callable, Dict, List

from loguru import logger
from web3 import Web3

from status import WalletState, WalletStatus


@dataclass(frozen=True)
class Transfer:
    sender: str
    recipient: str
    amount: int  # wei


def plan_refill(statuses: List[WalletStatus], target: int, reserve: int) -> List[Transfer]:
    """Plan transfers that bring every LOW/INSUFFICIENT wallet up to ``target``.

    A donor gives only native MON it holds above ``target + reserve``, so a
    donor is never pushed below target. Recipients are served in the order
    given; a recipient no donor can cover fully is skipped.
    """
    spare: Dict[str, int] = {
        s.address: s.native_balance - target - reserve
        for s in statuses
        if s.status is WalletState.OK and s.native_balance > target + reserve
    }
    needy = [s for s in statuses if s.status in (WalletState.LOW, WalletState.INSUFFICIENT)]

    plan = []
    for status in needy:
        need = target - status.total_balance
        if need <= 0:
            continue
        donor = next((address for address, amount in spare.items() if amount >= need), None)
        if donor is None:
            logger.warning(f"[{status.address}] No donor can cover {Web3.from_wei(need, 'ether')} MON")
            continue
        spare[donor] -= need
        plan.append(Transfer(sender=donor, recipient=status.address, amount=need))
    return plan


def execute_plan(plan: List[Transfer], send: Callable[[Transfer], bool]) -> int:
    """Run transfers one by one, returning how many were confirmed."""
    done = 0
    for transfer in plan:
        logger.info(f"[{transfer.sender}] Refilling {transfer.recipient} with {Web3.from_wei(transfer.amount, 'ether')} MON")
        if send(transfer):
            done += 1
        else:
            logger.error(f"[{transfer.sender}] Refill of {transfer.recipient} failed")
    return done
