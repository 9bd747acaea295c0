from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional, Sequence

from loguru import logger
from web3 import Web3

from errors import NoEndpointsRemaining


@dataclass(frozen=True)
class Endpoint:
    url: str
    proxy: Optional[str] = None  # user:pass@host:port
    timeout: float = 30

    @property
    def proxy_url(self) -> Optional[str]:
        if not self.proxy:
            return None
        return "http://" + self.proxy.removeprefix("https://").removeprefix("http://")

    @property
    def label(self) -> str:
        # never log proxy credentials
        if not self.proxy:
            return self.url
        return f"{self.url} via {self.proxy.rsplit('@', 1)[-1]}"

    def request_kwargs(self) -> dict:
        kwargs = {"timeout": self.timeout}
        if self.proxy_url:
            kwargs["proxies"] = {"http": self.proxy_url, "https": self.proxy_url}
        return kwargs

    def direct(self) -> "Endpoint":
        return replace(self, proxy=None)


def make_web3(endpoint: Endpoint) -> Web3:
    # retries are left to retry.execute
    provider = Web3.HTTPProvider(
        endpoint.url,
        request_kwargs=endpoint.request_kwargs(),
        exception_retry_configuration=None,
    )
    return Web3(provider)


class EndpointPool:
    """Ordered RPC endpoints with a single "current" cursor.

    The cursor makes one full cycle: with N endpoints, ``advance()`` succeeds
    N times (the last hop lands back on the primary) and raises
    ``NoEndpointsRemaining`` after that.

    A pool belongs to one wallet's processing chain and is not thread-safe.
    """

    def __init__(
        self,
        endpoints: Sequence[Endpoint],
        client_factory: Callable[[Endpoint], Web3] = make_web3,
    ):
        if not endpoints:
            raise ValueError("EndpointPool needs at least one endpoint")
        self._endpoints = tuple(endpoints)
        self._client_factory = client_factory
        self._clients: Dict[Endpoint, Web3] = {}
        self._index = 0
        self._hops = 0

    @classmethod
    def from_urls(
        cls,
        urls: List[str],
        proxy: Optional[str] = None,
        timeout: float = 30,
        client_factory: Callable[[Endpoint], Web3] = make_web3,
    ) -> "EndpointPool":
        return cls([Endpoint(url, proxy, timeout) for url in urls], client_factory)

    @property
    def endpoints(self) -> tuple:
        return self._endpoints

    @property
    def remaining(self) -> int:
        return len(self._endpoints) - self._hops

    def current(self) -> Endpoint:
        return self._endpoints[self._index]

    def advance(self) -> Endpoint:
        if self._hops >= len(self._endpoints):
            raise NoEndpointsRemaining([endpoint.label for endpoint in self._endpoints])

        previous = self.current()
        self._hops += 1
        self._index = self._hops % len(self._endpoints)
        logger.warning(f"RPC failover: {previous.label} -> {self.current().label}")
        return self.current()

    def client_for(self, endpoint: Endpoint) -> Web3:
        if endpoint not in self._clients:
            self._clients[endpoint] = self._client_factory(endpoint)
        return self._clients[endpoint]

    def client(self) -> Web3:
        return self.client_for(self.current())

    def probe(self, endpoint: Endpoint) -> bool:
        try:
            block = self.client_for(endpoint).eth.block_number
        except Exception as error:
            logger.warning(f"RPC {endpoint.label} is not responding: {error}")
            return False
        logger.debug(f"RPC {endpoint.label} is live at block {block}")
        return True

    def find_live(self) -> Endpoint:
        """Probe from the current endpoint onwards and stop at the first live one.

        Each endpoint is probed at most once per scan.
        """
        probed = set()
        while True:
            endpoint = self.current()
            if self.probe(endpoint):
                return endpoint
            probed.add(endpoint)
            if self.advance() in probed:
                raise NoEndpointsRemaining([e.label for e in self._endpoints])
