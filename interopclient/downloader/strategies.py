"""Test case orchestration strategies."""

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional, Sequence

from ..config import Config
from ..errors import ExpectationViolation, InvalidInput, VERSION_NEGOTIATION_FAILURE
from ..transport import SessionCache, TLSConfig, Transport, TransportFactory
from ..utils import console
from .fetch import Downloader, fetch_all


class StrategyBase(ABC):
    """Base class for test case strategies."""

    # Fewest URLs the strategy accepts.
    min_urls = 0

    def __init__(
        self,
        config: Config,
        tls_config: TLSConfig,
        transport_factory: TransportFactory,
        downloader: Downloader,
    ):
        self.config = config
        self.tls_config = tls_config
        self.transport_factory = transport_factory
        self.downloader = downloader
        self.name = self.__class__.__name__

    @abstractmethod
    async def run(self, urls: Sequence[str]) -> None:
        """Run the strategy, raising an InteropError on failure."""

    def _check_url_count(self, urls: Sequence[str]) -> None:
        if len(urls) < self.min_urls:
            raise InvalidInput(f"{self.name} expected at least {self.min_urls} URLs, got {len(urls)}")

    @asynccontextmanager
    async def _connection(
        self,
        tls_config: Optional[TLSConfig] = None,
        supported_versions: Optional[List[int]] = None,
    ) -> AsyncIterator[Transport]:
        """Open a transport and close it on every exit path.

        A close failure is raised when the body succeeded. When the body
        failed, the close failure is printed and the body's error propagates.
        """
        transport = self.transport_factory(
            tls_config or self.tls_config, supported_versions=supported_versions
        )
        try:
            yield transport
        except BaseException:
            try:
                await transport.close()
            except Exception as e:
                console.print(f"[yellow]Closing transport after failure also failed: {e}[/yellow]")
            raise
        await transport.close()


class PlainTransferStrategy(StrategyBase):
    """All URLs concurrently over a single connection."""

    async def run(self, urls: Sequence[str]) -> None:
        self._check_url_count(urls)
        async with self._connection() as transport:
            await fetch_all(self.downloader, transport, urls)


class MultiConnectStrategy(StrategyBase):
    """One fresh connection per URL, strictly one after the other."""

    min_urls = 1

    async def run(self, urls: Sequence[str]) -> None:
        self._check_url_count(urls)
        for url in urls:
            async with self._connection() as transport:
                result = await self.downloader.fetch(transport, url)
                if not result.ok:
                    raise result.error


class VersionNegotiationStrategy(StrategyBase):
    """Offers only a reserved version and expects the handshake to fail."""

    min_urls = 1

    async def run(self, urls: Sequence[str]) -> None:
        if len(urls) != 1:
            raise InvalidInput(f"{self.name} expected exactly 1 URL, got {len(urls)}")

        versions = [self.config.quic.unsupported_version]
        async with self._connection(supported_versions=versions) as transport:
            result = await self.downloader.fetch(transport, urls[0])

        if result.ok:
            raise ExpectationViolation("expected version negotiation to fail")
        if VERSION_NEGOTIATION_FAILURE not in str(result.error):
            raise ExpectationViolation(
                f"expect version negotiation error, got: {result.error}", cause=result.error
            )
        console.print(f"[green]✓ Version negotiation failed as expected: {result.error}[/green]")


class ResumptionStrategy(StrategyBase):
    """Two sequential connections, the second resuming the first's session.

    The first URL is fetched on the first connection. Once that connection is
    closed, the remaining URLs are fetched on a second one that shares the
    session cache, optionally sending them as 0-RTT requests.
    """

    min_urls = 2

    async def run(self, urls: Sequence[str], use_0rtt: bool = False) -> None:
        self._check_url_count(urls)

        cache = SessionCache(capacity=self.config.tls.session_cache_size)
        tls_config = self.tls_config.with_session_cache(cache)

        async with self._connection(tls_config=tls_config) as transport:
            await fetch_all(self.downloader, transport, urls[:1])

        if not len(cache):
            console.print("[yellow]No session ticket received on the first connection[/yellow]")

        async with self._connection(tls_config=tls_config) as transport:
            await fetch_all(self.downloader, transport, urls[1:], use_0rtt=use_0rtt)
