"""Request/response transports over QUIC, built on aioquic."""

import asyncio
import ssl
from abc import ABC, abstractmethod
from collections import OrderedDict
from contextlib import AsyncExitStack
from dataclasses import dataclass, replace
from typing import (
    Any, AsyncIterator, Callable, Dict, List, Optional, Sequence, TextIO, Tuple,
    Union
)
from urllib.parse import urlparse

from aioquic.asyncio import QuicConnectionProtocol, connect
from aioquic.h0.connection import H0_ALPN, H0Connection
from aioquic.h3.connection import H3_ALPN, H3Connection
from aioquic.h3.events import DataReceived, H3Event, HeadersReceived
from aioquic.quic.configuration import QuicConfiguration
from aioquic.quic.events import ConnectionTerminated, QuicEvent
from aioquic.tls import SessionTicket

from . import __version__
from .config import QuicSettings
from .errors import (
    RequestConstructionError, TransportError, VERSION_NEGOTIATION_FAILURE
)

METHOD_GET = "GET"
# Asks the transport to send the request as early data when it can.
METHOD_GET_0RTT = "GET_0RTT"

USER_AGENT = f"interopclient/{__version__}"

# aioquic's reason phrase for a version negotiation without common versions.
_AIOQUIC_NO_COMMON_VERSION = "Could not find a common protocol version"

Headers = List[Tuple[bytes, bytes]]


@dataclass(frozen=True)
class Request:
    """A single retrieval request."""

    method: str
    url: str
    scheme: str
    host: str
    port: int
    path: str
    query: str = ""

    @classmethod
    def build(cls, method: str, url: str, default_port: int = 443) -> "Request":
        """Parse ``url`` into a request, raising RequestConstructionError."""
        if method not in (METHOD_GET, METHOD_GET_0RTT):
            raise RequestConstructionError(f"invalid method {method!r}")

        try:
            parsed = urlparse(url)
            port = parsed.port or default_port
        except ValueError as e:
            raise RequestConstructionError(f"malformed URL {url!r}: {e}", cause=e)

        if not parsed.scheme or not parsed.hostname:
            raise RequestConstructionError(f"malformed URL {url!r}: missing scheme or host")

        return cls(
            method=method,
            url=url,
            scheme=parsed.scheme,
            host=parsed.hostname,
            port=port,
            path=parsed.path or "/",
            query=parsed.query,
        )

    @property
    def authority(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def target(self) -> str:
        """Request target as sent on the wire."""
        if self.query:
            return f"{self.path}?{self.query}"
        return self.path

    @property
    def early_data(self) -> bool:
        return self.method == METHOD_GET_0RTT


class Response:
    """Response with a streamed body. Use as an async context manager."""

    def __init__(
        self,
        status: int = 200,
        headers: Optional[Headers] = None,
        body: Optional[AsyncIterator[bytes]] = None,
        release: Optional[Callable[[], None]] = None,
    ):
        self.status = status
        self.headers = headers or []
        self._body = body
        self._release = release
        self.closed = False

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        if self._body is None:
            return
        async for chunk in self._body:
            yield chunk

    async def aclose(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self._release is not None:
            self._release()
        aclose = getattr(self._body, 'aclose', None)
        if aclose is not None:
            await aclose()

    async def __aenter__(self) -> "Response":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()


class SessionCache:
    """In-memory LRU cache of TLS session tickets, keyed by server name."""

    def __init__(self, capacity: int = 1):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._tickets: "OrderedDict[str, SessionTicket]" = OrderedDict()

    def put(self, server_name: str, ticket: SessionTicket) -> None:
        self._tickets.pop(server_name, None)
        self._tickets[server_name] = ticket
        while len(self._tickets) > self.capacity:
            self._tickets.popitem(last=False)

    def get(self, server_name: str) -> Optional[SessionTicket]:
        ticket = self._tickets.get(server_name)
        if ticket is not None:
            self._tickets.move_to_end(server_name)
        return ticket

    def __len__(self) -> int:
        return len(self._tickets)


@dataclass
class TLSConfig:
    """TLS options shared by the transports of one run."""

    insecure_skip_verify: bool = True
    key_log: Optional[TextIO] = None
    session_cache: Optional[SessionCache] = None

    def with_session_cache(self, cache: SessionCache) -> "TLSConfig":
        return replace(self, session_cache=cache)


class Transport(ABC):
    """A capability performing request/response exchanges over QUIC."""

    @abstractmethod
    async def round_trip(self, request: Request) -> Response:
        """Perform one exchange, raising TransportError on failure."""

    @abstractmethod
    async def close(self) -> None:
        """Release all connection state, raising TransportError on failure."""


# Called as factory(tls_config, supported_versions=None).
TransportFactory = Callable[..., Transport]


def describe_termination(event: ConnectionTerminated) -> str:
    """Human readable reason for a terminated connection."""
    if event.reason_phrase == _AIOQUIC_NO_COMMON_VERSION:
        return VERSION_NEGOTIATION_FAILURE
    reason = event.reason_phrase or "no reason given"
    return f"connection closed (error {event.error_code:#x}): {reason}"


class _ResponseStream:
    """Collects the events of one request stream."""

    def __init__(self):
        self.started: asyncio.Future = asyncio.get_running_loop().create_future()
        self.queue: asyncio.Queue = asyncio.Queue()

    def start(self, status: int, headers: Headers) -> None:
        if not self.started.done():
            self.started.set_result((status, headers))

    def feed(self, data: bytes) -> None:
        if data:
            self.queue.put_nowait(data)

    def finish(self) -> None:
        self.start(200, [])
        self.queue.put_nowait(None)

    def fail(self, error: Exception) -> None:
        if not self.started.done():
            self.started.set_exception(error)
        self.queue.put_nowait(error)

    async def chunks(self) -> AsyncIterator[bytes]:
        while True:
            item = await self.queue.get()
            if item is None:
                return
            if isinstance(item, Exception):
                raise item
            yield item


class HttpClientProtocol(QuicConnectionProtocol):
    """QUIC protocol speaking HTTP/3, or HTTP/0.9 for hq-* ALPNs."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.terminated: Optional[ConnectionTerminated] = None
        self._streams: Dict[int, _ResponseStream] = {}

        if self._quic.configuration.alpn_protocols[0].startswith("hq-"):
            self._http: Union[H0Connection, H3Connection] = H0Connection(self._quic)
        else:
            self._http = H3Connection(self._quic)

    def termination_reason(self) -> Optional[str]:
        if self.terminated is None:
            return None
        return describe_termination(self.terminated)

    async def send_request(self, request: Request) -> Response:
        if self.terminated is not None:
            raise TransportError(self.termination_reason())

        stream_id = self._quic.get_next_available_stream_id()
        stream = _ResponseStream()
        self._streams[stream_id] = stream

        self._http.send_headers(
            stream_id=stream_id,
            headers=[
                (b":method", METHOD_GET.encode()),
                (b":scheme", request.scheme.encode()),
                (b":authority", request.authority.encode()),
                (b":path", request.target.encode()),
                (b"user-agent", USER_AGENT.encode()),
            ],
            end_stream=True,
        )
        self.transmit()

        status, headers = await stream.started
        return Response(
            status=status,
            headers=headers,
            body=stream.chunks(),
            release=lambda: self._streams.pop(stream_id, None),
        )

    def quic_event_received(self, event: QuicEvent) -> None:
        if isinstance(event, ConnectionTerminated):
            self.terminated = event
            error = TransportError(describe_termination(event))
            for stream in self._streams.values():
                stream.fail(error)
            return

        for http_event in self._http.handle_event(event):
            self._http_event_received(http_event)

    def _http_event_received(self, event: H3Event) -> None:
        if not isinstance(event, (HeadersReceived, DataReceived)):
            return
        stream = self._streams.get(event.stream_id)
        if stream is None:
            return

        if isinstance(event, HeadersReceived):
            headers = dict(event.headers)
            stream.start(int(headers.get(b":status", b"200")), event.headers)
        else:
            # HTTP/0.9 responses carry no headers.
            stream.start(200, [])
            stream.feed(event.data)

        if event.stream_ended:
            stream.finish()


class QuicTransport(Transport):
    """Transport keeping one aioquic connection per authority."""

    alpn_protocols: List[str] = []

    def __init__(
        self,
        tls_config: TLSConfig,
        supported_versions: Optional[Sequence[int]] = None,
        settings: Optional[QuicSettings] = None,
    ):
        self.tls_config = tls_config
        self.supported_versions = list(supported_versions) if supported_versions else None
        self.settings = settings or QuicSettings()
        self._clients: Dict[str, HttpClientProtocol] = {}
        self._stack = AsyncExitStack()
        self._lock = asyncio.Lock()
        self._closed = False

    def _build_configuration(self, request: Request) -> QuicConfiguration:
        configuration = QuicConfiguration(
            is_client=True,
            alpn_protocols=list(self.alpn_protocols),
            idle_timeout=self.settings.idle_timeout,
            server_name=request.host,
            secrets_log_file=self.tls_config.key_log,
        )
        if self.tls_config.insecure_skip_verify:
            configuration.verify_mode = ssl.CERT_NONE
        if self.supported_versions:
            configuration.supported_versions = list(self.supported_versions)
        cache = self.tls_config.session_cache
        if cache is not None:
            configuration.session_ticket = cache.get(request.host)
        return configuration

    def _store_ticket(self, ticket: SessionTicket) -> None:
        cache = self.tls_config.session_cache
        if cache is not None:
            cache.put(ticket.server_name, ticket)

    async def _dial(self, request: Request) -> HttpClientProtocol:
        created: List[HttpClientProtocol] = []

        def create_protocol(*args: Any, **kwargs: Any) -> HttpClientProtocol:
            protocol = HttpClientProtocol(*args, **kwargs)
            created.append(protocol)
            return protocol

        try:
            client = await self._stack.enter_async_context(
                connect(
                    request.host,
                    request.port,
                    configuration=self._build_configuration(request),
                    create_protocol=create_protocol,
                    session_ticket_handler=self._store_ticket,
                    wait_connected=not request.early_data,
                )
            )
        except ConnectionError as e:
            reason = created[0].termination_reason() if created else None
            raise TransportError(reason or f"handshake with {request.authority} failed", cause=e)
        except OSError as e:
            raise TransportError(f"cannot reach {request.authority}: {e}", cause=e)
        return client

    async def _get_client(self, request: Request) -> HttpClientProtocol:
        async with self._lock:
            if self._closed:
                raise TransportError("transport is closed")
            client = self._clients.get(request.authority)
            if client is None:
                client = await self._dial(request)
                self._clients[request.authority] = client
            return client

    async def round_trip(self, request: Request) -> Response:
        client = await self._get_client(request)
        try:
            return await client.send_request(request)
        except TransportError:
            raise
        except Exception as e:
            raise TransportError.wrap(e)

    async def close(self) -> None:
        async with self._lock:
            if self._closed:
                return
            self._closed = True
            self._clients.clear()
            try:
                await self._stack.aclose()
            except Exception as e:
                raise TransportError(f"closing connection failed: {e}", cause=e)


class H3Transport(QuicTransport):
    """HTTP/3 transport."""

    alpn_protocols = H3_ALPN


class HQTransport(QuicTransport):
    """HTTP/0.9 over QUIC (hq-interop) transport."""

    alpn_protocols = H0_ALPN
