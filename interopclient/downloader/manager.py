"""Test case dispatch: picks a strategy per test case and runs it."""

import time
from functools import partial
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Tuple, Union

from rich.table import Table

from ..config import Config
from ..errors import UnsupportedTestCase
from ..testcases import TestCase
from ..transport import H3Transport, HQTransport, TLSConfig, TransportFactory
from ..utils import console, format_bytes, format_duration
from .fetch import Downloader
from .strategies import (
    MultiConnectStrategy, PlainTransferStrategy, ResumptionStrategy, StrategyBase,
    VersionNegotiationStrategy
)

TRANSPORT_H3 = 'h3'
TRANSPORT_HQ = 'hq'


def default_transports(config: Config) -> Dict[str, TransportFactory]:
    """Transport factories for the HTTP/3 and HTTP/0.9 test cases."""
    return {
        TRANSPORT_H3: partial(H3Transport, settings=config.quic),
        TRANSPORT_HQ: partial(HQTransport, settings=config.quic),
    }


class TestCaseRunner:
    """Maps test cases to strategies and runs them."""

    __test__ = False

    def __init__(
        self,
        config: Config,
        tls_config: Optional[TLSConfig] = None,
        transports: Optional[Dict[str, TransportFactory]] = None,
        downloader: Optional[Downloader] = None,
    ):
        self.config = config
        self.tls_config = tls_config or TLSConfig(insecure_skip_verify=config.tls.insecure_skip_verify)
        self.transports = transports or default_transports(config)

        history_file = config.logging.history_file
        self.downloader = downloader or Downloader(
            Path(config.download_dir),
            history_file=Path(history_file) if history_file else None,
            default_port=config.quic.default_port,
        )

    def _strategy(self, cls, transport: str):
        return cls(self.config, self.tls_config, self.transports[transport], self.downloader)

    def select(self, testcase: TestCase) -> Tuple[StrategyBase, Dict[str, Any]]:
        """Strategy and run options for ``testcase``."""
        if testcase is TestCase.HTTP3:
            return self._strategy(PlainTransferStrategy, TRANSPORT_H3), {}
        elif testcase in (TestCase.HANDSHAKE, TestCase.TRANSFER, TestCase.RETRY):
            # These differ only in what the server does, not in what we do.
            return self._strategy(PlainTransferStrategy, TRANSPORT_HQ), {}
        elif testcase is TestCase.MULTICONNECT:
            return self._strategy(MultiConnectStrategy, TRANSPORT_HQ), {}
        elif testcase is TestCase.VERSIONNEGOTIATION:
            return self._strategy(VersionNegotiationStrategy, TRANSPORT_HQ), {}
        elif testcase is TestCase.RESUMPTION:
            return self._strategy(ResumptionStrategy, TRANSPORT_HQ), {'use_0rtt': False}
        elif testcase is TestCase.ZERORTT:
            return self._strategy(ResumptionStrategy, TRANSPORT_HQ), {'use_0rtt': True}
        else:
            raise UnsupportedTestCase(f"unsupported test case: {testcase.value}")

    async def run(self, testcase: Union[TestCase, str], urls: Sequence[str]) -> None:
        """Run ``testcase`` against ``urls``, raising an InteropError on failure."""
        if not isinstance(testcase, TestCase):
            testcase = TestCase.parse(testcase)

        strategy, options = self.select(testcase)

        console.print(f"[bold blue]Running test case {testcase.value} ({strategy.name}, {len(urls)} URLs)...[/bold blue]")
        start_time = time.time()
        try:
            await strategy.run(urls, **options)
        except Exception as e:
            console.print(f"[red]✗ Test case {testcase.value} failed: {e}[/red]")
            raise
        finally:
            self._display_download_stats(time.time() - start_time)

        console.print(f"[green]✓ Test case {testcase.value} succeeded[/green]")

    def _display_download_stats(self, duration: float) -> None:
        """Display a summary of every download attempt."""
        results = self.downloader.results
        if not results:
            return

        table = Table(title="Download Summary")
        table.add_column("URL", style="cyan")
        table.add_column("Result", style="magenta")
        table.add_column("Size", style="green")
        table.add_column("Duration", style="yellow")

        for result in results:
            status = "ok" if result.ok else type(result.error).__name__
            table.add_row(
                result.url,
                status,
                format_bytes(result.bytes_written),
                format_duration(result.duration),
            )

        console.print(table)
        console.print(f"Total: {format_bytes(sum(r.bytes_written for r in results))} in {format_duration(duration)}")


async def run_testcase(
    config: Config,
    testcase: Union[TestCase, str],
    urls: Sequence[str],
    tls_config: Optional[TLSConfig] = None,
) -> None:
    """Main function to run a test case."""
    runner = TestCaseRunner(config, tls_config)
    await runner.run(testcase, urls)
