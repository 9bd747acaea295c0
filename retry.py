"""Retry executor shared by every RPC call and transaction in the project.

Errors are split into two kinds by ``classify_error``:

- transient: worth another attempt (timeouts, dropped connections, HTTP 5xx
  and 429, malformed RPC responses, provider rate limits)
- permanent: will fail the same way again (reverts, invalid input,
  insufficient funds, nonce conflicts, anything not listed as transient)

``execute`` retries only transient errors and raises ``RetryExhausted`` once
the attempts are used up. Permanent errors are re-raised on first sight.
"""

import json
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, TypeVar

import requests
from loguru import logger
from web3 import Web3
from web3.exceptions import BadResponseFormat, TimeExhausted, Web3RPCError

from endpoints import EndpointPool
from errors import Cancelled, RetryExhausted

T = TypeVar("T")

# JSON-RPC error codes providers use for overload and rate limiting
TRANSIENT_RPC_CODES = frozenset({-32005, -32002, -32603, 429})
TRANSIENT_HTTP_CODES = frozenset({429, 500, 502, 503, 504})
RATE_LIMIT_MARKERS = ("rate limit", "too many requests", "request limit")


class ErrorKind(str, Enum):
    TRANSIENT = "transient"
    PERMANENT = "permanent"


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    retry_delay: float = 5
    deadline: Optional[float] = None  # total seconds for all attempts

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.retry_delay < 0:
            raise ValueError(f"retry_delay must be >= 0, got {self.retry_delay}")
        if self.deadline is not None and self.deadline <= 0:
            raise ValueError(f"deadline must be > 0, got {self.deadline}")


def _rpc_error(error: Web3RPCError) -> dict:
    response = getattr(error, "rpc_response", None)
    if isinstance(response, dict) and isinstance(response.get("error"), dict):
        return response["error"]
    return {}


def classify_error(error: BaseException) -> ErrorKind:
    if isinstance(error, (requests.exceptions.Timeout, requests.exceptions.ConnectionError)):
        return ErrorKind.TRANSIENT

    if isinstance(error, requests.exceptions.HTTPError):
        status = error.response.status_code if error.response is not None else None
        if status in TRANSIENT_HTTP_CODES:
            return ErrorKind.TRANSIENT
        return ErrorKind.PERMANENT

    if isinstance(error, (TimeExhausted, BadResponseFormat, json.JSONDecodeError)):
        return ErrorKind.TRANSIENT

    if isinstance(error, Web3RPCError):
        rpc_error = _rpc_error(error)
        if rpc_error.get("code") in TRANSIENT_RPC_CODES:
            return ErrorKind.TRANSIENT
        message = str(rpc_error.get("message") or error).lower()
        if any(marker in message for marker in RATE_LIMIT_MARKERS):
            return ErrorKind.TRANSIENT

    return ErrorKind.PERMANENT


def _raise_if_cancelled(stop_event, policy: RetryPolicy, started: float, description: str):
    if stop_event is not None and stop_event.is_set():
        raise Cancelled(f"{description or 'Call'} cancelled")
    if policy.deadline is not None and time.monotonic() - started >= policy.deadline:
        raise Cancelled(f"{description or 'Call'} ran out of its {policy.deadline}s deadline")


def execute(
    operation: Callable[[], T],
    policy: RetryPolicy,
    stop_event: Optional[threading.Event] = None,
    description: str = "",
) -> T:
    started = time.monotonic()
    last_error = None

    for attempt in range(1, policy.max_attempts + 1):
        _raise_if_cancelled(stop_event, policy, started, description)
        try:
            return operation()
        except Exception as error:
            if classify_error(error) is ErrorKind.PERMANENT:
                raise
            last_error = error
            logger.warning(f"{description or 'RPC call'} failed ({attempt}/{policy.max_attempts}): {error}")

        if attempt < policy.max_attempts and policy.retry_delay:
            delay = policy.retry_delay
            if policy.deadline is not None:
                delay = max(0, min(delay, policy.deadline - (time.monotonic() - started)))
            if stop_event is None:
                time.sleep(delay)
            elif stop_event.wait(delay):
                raise Cancelled(f"{description or 'Call'} cancelled")

    raise RetryExhausted(last_error, policy.max_attempts, description)


def execute_with_failover(
    operation: Callable[[Web3], T],
    pool: EndpointPool,
    policy: RetryPolicy,
    stop_event: Optional[threading.Event] = None,
    description: str = "",
) -> T:
    """Run ``operation(web3)`` with retries, failing over to the next endpoint once.

    ``NoEndpointsRemaining`` propagates when the pool has nothing left, and a
    second ``RetryExhausted`` propagates when the new endpoint fails as well.
    """
    try:
        return execute(lambda: operation(pool.client()), policy, stop_event, description)
    except RetryExhausted as error:
        logger.warning(f"{error} on {pool.current().label}")
        pool.advance()

    return execute(lambda: operation(pool.client()), policy, stop_event, description)
