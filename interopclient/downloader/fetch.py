"""Single-file downloads and concurrent download batches."""

import asyncio
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import unquote

from ..errors import InteropError, StorageError, TransportError
from ..transport import (
    METHOD_GET, METHOD_GET_0RTT, Request, Response, Transport
)
from ..utils import append_jsonl, console, ensure_directory, get_timestamp


@dataclass
class DownloadTarget:
    """A URL and the local file its body is saved to."""
    url: str
    dest_path: Path

    @classmethod
    def for_request(cls, request: Request, download_dir: Path) -> "DownloadTarget":
        # Saved under the decoded path; the request itself stays percent-encoded.
        return cls(url=request.url, dest_path=Path(download_dir) / unquote(request.path).lstrip('/'))


@dataclass
class DownloadResult:
    """Download result."""
    url: str
    ok: bool
    bytes_written: int = 0
    dest_path: Optional[Path] = None
    error: Optional[InteropError] = None
    duration: float = 0.0

    def to_record(self) -> Dict[str, Any]:
        return {
            'url': self.url,
            'ok': self.ok,
            'bytes': self.bytes_written,
            'dest_path': str(self.dest_path) if self.dest_path else None,
            'error': str(self.error) if self.error else None,
            'error_kind': type(self.error).__name__ if self.error else None,
            'duration': self.duration,
            'end': get_timestamp(),
        }


class Downloader:
    """Fetches URLs through a transport and saves the bodies to disk.

    Every result is kept in ``results`` (and appended to ``history_file`` if
    one is set) so a run can be summarised afterwards.
    """

    def __init__(self, download_dir: Path, history_file: Optional[Path] = None, default_port: int = 443):
        self.download_dir = Path(download_dir)
        self.history_file = Path(history_file) if history_file else None
        self.default_port = default_port
        self.results: List[DownloadResult] = []

    async def fetch(self, transport: Transport, url: str, use_0rtt: bool = False) -> DownloadResult:
        """Download ``url``. Failures are returned, never raised."""
        start_time = time.time()
        method = METHOD_GET_0RTT if use_0rtt else METHOD_GET

        try:
            request = Request.build(method, url, default_port=self.default_port)
        except InteropError as e:
            return self._finish(DownloadResult(url=url, ok=False, error=e), start_time)

        target = DownloadTarget.for_request(request, self.download_dir)

        try:
            response = await transport.round_trip(request)
        except Exception as e:
            return self._finish(DownloadResult(
                url=url, ok=False, dest_path=target.dest_path, error=TransportError.wrap(e)
            ), start_time)

        try:
            bytes_written = await self._save(response, target.dest_path)
        except Exception as e:
            error = StorageError(f"saving {url} to {target.dest_path} failed: {e}", cause=e)
            return self._finish(DownloadResult(
                url=url, ok=False, dest_path=target.dest_path, error=error
            ), start_time)

        return self._finish(DownloadResult(
            url=url, ok=True, bytes_written=bytes_written, dest_path=target.dest_path
        ), start_time)

    async def _save(self, response: Response, dest_path: Path) -> int:
        bytes_written = 0
        async with response:
            ensure_directory(dest_path.parent)
            with open(dest_path, 'wb') as f:
                async for chunk in response.iter_bytes():
                    f.write(chunk)
                    bytes_written += len(chunk)
        return bytes_written

    def _finish(self, result: DownloadResult, start_time: float) -> DownloadResult:
        result.duration = time.time() - start_time
        if self.history_file is not None:
            try:
                append_jsonl(self.history_file, result.to_record())
            except OSError as e:
                error = StorageError(f"writing download history to {self.history_file} failed: {e}", cause=e)
                if result.ok:
                    result.ok = False
                    result.error = error
                else:
                    console.print(f"[yellow]{error}[/yellow]")
        self.results.append(result)
        return result


async def fetch_all(
    downloader: Downloader,
    transport: Transport,
    urls: Sequence[str],
    use_0rtt: bool = False,
) -> List[DownloadResult]:
    """Download all ``urls`` concurrently over one transport.

    Waits for every download, then raises the error of the first failed URL
    (in ``urls`` order). All failures are printed.
    """
    outcomes = await asyncio.gather(
        *(downloader.fetch(transport, url, use_0rtt) for url in urls),
        return_exceptions=True,
    )

    results = []
    for url, outcome in zip(urls, outcomes):
        if isinstance(outcome, BaseException):
            if not isinstance(outcome, Exception):
                raise outcome
            error = outcome if isinstance(outcome, InteropError) else InteropError(
                f"downloading {url} failed: {outcome}", cause=outcome
            )
            outcome = DownloadResult(url=url, ok=False, error=error)
        results.append(outcome)

    failures = [result for result in results if not result.ok]
    for failure in failures:
        console.print(f"[red]✗ {failure.url}: {failure.error}[/red]")
    if failures:
        raise failures[0].error

    return results
