"""Shared fixtures: stub transports that record what the strategies do."""

import asyncio
from typing import Dict, List, Optional, Tuple

import pytest

from interopclient.config import Config
from interopclient.downloader.fetch import Downloader
from interopclient.transport import Request, Response, TLSConfig, Transport


async def body_chunks(data: bytes, chunk_size: int = 4):
    for i in range(0, len(data), chunk_size):
        await asyncio.sleep(0)
        yield data[i:i + chunk_size]


class StubTransport(Transport):
    """Transport answering from memory and logging every call."""

    def __init__(self, factory: "StubTransportFactory", index: int, tls_config: TLSConfig,
                 supported_versions: Optional[List[int]] = None):
        self.factory = factory
        self.index = index
        self.tls_config = tls_config
        self.supported_versions = supported_versions
        self.requests: List[Request] = []
        self.close_calls = 0

    async def round_trip(self, request: Request) -> Response:
        self.requests.append(request)
        self.factory.events.append(('round_trip', self.index, request.url))
        delay = self.factory.delays.get(request.url, 0)
        await asyncio.sleep(delay)
        error = self.factory.errors.get(request.url)
        if error is not None:
            raise error
        body = self.factory.bodies.get(request.url, b"hello interop")
        response = Response(status=200, body=body_chunks(body))
        self.factory.responses.append(response)
        return response

    async def close(self) -> None:
        self.close_calls += 1
        self.factory.events.append(('close', self.index))
        if self.factory.close_error is not None:
            raise self.factory.close_error


class StubTransportFactory:
    """Callable used in place of a transport class."""

    def __init__(self, errors: Optional[Dict[str, Exception]] = None,
                 bodies: Optional[Dict[str, bytes]] = None,
                 delays: Optional[Dict[str, float]] = None,
                 close_error: Optional[Exception] = None):
        self.errors = errors or {}
        self.bodies = bodies or {}
        self.delays = delays or {}
        self.close_error = close_error
        self.events: List[Tuple] = []
        self.transports: List[StubTransport] = []
        self.responses: List[Response] = []

    def __call__(self, tls_config: TLSConfig, supported_versions: Optional[List[int]] = None) -> StubTransport:
        transport = StubTransport(self, len(self.transports), tls_config, supported_versions)
        self.transports.append(transport)
        self.events.append(('open', transport.index))
        return transport

    @property
    def opened(self) -> int:
        return len(self.transports)


@pytest.fixture
def config(tmp_path):
    return Config(
        download_dir=str(tmp_path / "downloads"),
        logging={'log_file': None, 'keylog_file': None, 'history_file': None},
    )


@pytest.fixture
def tls_config():
    return TLSConfig(insecure_skip_verify=True)


@pytest.fixture
def downloader(config):
    return Downloader(config.download_dir)


@pytest.fixture
def stub_factory():
    return StubTransportFactory()
