"""
SongCast Server
LAN HTTP server streaming songs and cover art with byte-range support.
"""

import asyncio
import logging
import mimetypes
import socket
import threading
from dataclasses import dataclass
from typing import Callable, Optional, Set

import psutil
from aiohttp import hdrs, web
from zeroconf import ServiceInfo
from zeroconf.asyncio import AsyncZeroconf

from byte_ranges import (
    ByteRange,
    MalformedRange,
    UnsatisfiableRange,
    parse_range_header,
    resolve_range,
)
from library import ByteSource, Catalog, FileAccess, LibraryCatalog, LocalFileAccess

logger = logging.getLogger(__name__)


# ============================================================================
# Configuration
# ============================================================================

@dataclass
class ServerConfig:
    """Server configuration parameters."""
    SERVER_NAME: str = "SongCast"
    VERSION: str = "1.0"
    HOST: str = "0.0.0.0"
    PORT: int = 8080
    LIBRARY_PATH: str = "music"
    SONG_CONTENT_TYPE: str = "audio/mpeg"
    ART_CONTENT_TYPE: str = "image/jpeg"
    CHUNK_SIZE: int = 64 * 1024
    WRITE_TIMEOUT: float = 30.0  # Max seconds a stalled client may block one chunk
    SHUTDOWN_GRACE: float = 1.0  # Seconds in-flight responses get on stop
    ENABLE_MDNS: bool = True


# ============================================================================
# Errors
# ============================================================================

class RequestError(Exception):
    """Per-request failure mapped to an HTTP status."""
    status = 500

    def __init__(self, message: str, headers: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.headers = headers or {}


class BadRequest(RequestError):
    status = 400


class NotFound(RequestError):
    status = 404


class RangeNotSatisfiable(RequestError):
    status = 416

    def __init__(self, message: str, total: int):
        super().__init__(message, headers={hdrs.CONTENT_RANGE: f"bytes */{total}"})
        self.total = total


class InternalError(RequestError):
    status = 500


class ServerStartError(Exception):
    """The server could not be started; nothing is left running."""


# ============================================================================
# Address resolution
# ============================================================================

def resolve_lan_ipv4() -> Optional[str]:
    """
    First IPv4 address of an active, non-loopback network interface.
    Returns None when the host has no usable network.
    """
    try:
        stats = psutil.net_if_stats()
        addresses = psutil.net_if_addrs()
    except (OSError, psutil.Error) as e:
        logger.error(f"Interface enumeration failed: {e}")
        return None

    for interface, addrs in addresses.items():
        stat = stats.get(interface)
        if stat is None or not stat.isup:
            continue
        for addr in addrs:
            if addr.family == socket.AF_INET and not addr.address.startswith('127.'):
                return addr.address
    return None


# ============================================================================
# Server state
# ============================================================================

class ServerState:
    """
    Running flag and advertised address, shared with the host process.
    Written by ServerLifecycle only; safe to read from any thread.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._running = False
        self._address: Optional[str] = None

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._running

    @property
    def bound_address(self) -> Optional[str]:
        with self._lock:
            return self._address

    def set_running(self, address: str):
        with self._lock:
            self._running = True
            self._address = address

    def reset(self):
        with self._lock:
            self._running = False
            self._address = None


# ============================================================================
# Request pipelines
# ============================================================================

@dataclass
class StreamPlan:
    """Everything needed to answer a request: an open source and what to send."""
    source: ByteSource
    content_type: str
    window: Optional[ByteRange] = None


async def _open_source(files: FileAccess, locator: str) -> ByteSource:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, files.open, locator)


async def plan_song_response(catalog: Catalog, files: FileAccess, song_id: str,
                             range_header: Optional[str] = None) -> StreamPlan:
    """
    validate -> lookup -> open -> resolve range.

    When the Range header lists several ranges only the first is served.
    Raises a RequestError subclass on any short-circuit; the source is
    closed again if the failure happens after it was opened.
    """
    if not song_id:
        raise BadRequest("Song ID is missing")

    song = await catalog.lookup(song_id)
    if song is None:
        raise NotFound("Song not found")

    try:
        source = await _open_source(files, song.locator)
    except FileNotFoundError as e:
        raise NotFound("File not found") from e
    except OSError as e:
        raise InternalError(f"Error serving file: {e}") from e

    if range_header is None:
        return StreamPlan(source, song.content_type)

    try:
        try:
            specs = parse_range_header(range_header)
        except MalformedRange as e:
            raise BadRequest("Invalid range") from e
        if not specs:
            raise BadRequest("Invalid range")

        try:
            window = resolve_range(specs[0], source.size)
        except UnsatisfiableRange as e:
            raise RangeNotSatisfiable("Range not satisfiable", source.size) from e
    except RequestError:
        source.close()
        raise

    return StreamPlan(source, song.content_type, window)


async def plan_art_response(catalog: Catalog, files: FileAccess, song_id: str,
                            content_type: str = "image/jpeg") -> StreamPlan:
    """
    validate -> lookup -> open. Art is always sent whole.

    The image type is guessed from the art locator; ``content_type`` is used
    when the locator does not look like an image.
    """
    if not song_id:
        raise BadRequest("Song ID is missing")

    song = await catalog.lookup(song_id)
    if song is None or not song.art_locator:
        raise NotFound("Album art not found")

    try:
        source = await _open_source(files, song.art_locator)
    except OSError as e:
        raise InternalError("Could not open album art file") from e

    guessed, _ = mimetypes.guess_type(song.art_locator)
    if guessed and guessed.startswith('image/'):
        content_type = guessed

    return StreamPlan(source, content_type)


# ============================================================================
# Streaming
# ============================================================================

async def stream_source(request: web.Request, source: ByteSource, content_type: str,
                        window: Optional[ByteRange] = None,
                        chunk_size: int = 64 * 1024,
                        write_timeout: float = 30.0) -> web.StreamResponse:
    """
    Stream ``source`` (whole, or only ``window``) to the client.

    200 with the full body when ``window`` is None, 206 with Content-Range
    otherwise. The body is read and written ``chunk_size`` bytes at a time.
    ``source`` is closed before this returns, whatever happens.

    Raises:
        InternalError: the source failed before any header was sent

    Failures after the headers went out are logged and the connection is
    dropped, since the status can no longer change.
    """
    loop = asyncio.get_running_loop()
    resp = None
    try:
        total = source.size
        if window is None:
            offset, remaining = 0, total
            resp = web.StreamResponse(status=200)
        else:
            offset, remaining = window.start, window.length
            resp = web.StreamResponse(status=206)
            resp.headers[hdrs.CONTENT_RANGE] = window.content_range(total)
        resp.headers[hdrs.ACCEPT_RANGES] = 'bytes'
        resp.content_type = content_type
        resp.content_length = remaining

        try:
            await loop.run_in_executor(None, source.seek, offset)
        except OSError as e:
            raise InternalError(f"Error serving file: {e}") from e

        await resp.prepare(request)

        while remaining > 0:
            try:
                data = await loop.run_in_executor(None, source.read, min(chunk_size, remaining))
            except OSError as e:
                logger.error(f"Read failed on {source.name} after headers were sent: {e}")
                _abort(request)
                break
            if not data:
                logger.error(f"{source.name}: unexpected end of file, {remaining} bytes short")
                _abort(request)
                break

            await asyncio.wait_for(resp.write(data), timeout=write_timeout)
            remaining -= len(data)

        return resp

    except ConnectionResetError:
        logger.debug(f"Client disconnected: {request.remote}")
        return resp
    except asyncio.TimeoutError:
        logger.warning(f"Client stalled for {write_timeout}s, dropping: {request.remote}")
        _abort(request)
        return resp
    except Exception:
        if resp is None or not resp.prepared:
            raise
        logger.exception(f"Streaming {source.name} failed after headers were sent")
        _abort(request)
        return resp
    finally:
        source.close()


def _abort(request: web.Request):
    """Drop the connection; the response can no longer be completed."""
    transport = request.transport
    if transport is not None:
        transport.abort()


# ============================================================================
# HTTP server
# ============================================================================

class MediaHttpServer:
    """Routes /song/{id} and /art/{id} to the catalog and file access layer."""

    def __init__(self, catalog: Catalog, files: FileAccess, config: ServerConfig = None):
        self.catalog = catalog
        self.files = files
        self.config = config or ServerConfig()
        self._open_sources: Set[ByteSource] = set()

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get('/song/{song_id}', self.handle_song, allow_head=False)
        app.router.add_get('/song/', self.handle_song, allow_head=False)
        app.router.add_get('/art/{song_id}', self.handle_art, allow_head=False)
        app.router.add_get('/art/', self.handle_art, allow_head=False)
        return app

    @property
    def open_source_count(self) -> int:
        return len(self._open_sources)

    def close_open_sources(self) -> int:
        """Force-close every source still being streamed. Returns how many."""
        sources = list(self._open_sources)
        for source in sources:
            source.close()
        self._open_sources.clear()
        return len(sources)

    async def handle_song(self, request: web.Request) -> web.StreamResponse:
        """GET /song/{song_id}, honouring the first range of a Range header."""
        song_id = request.match_info.get('song_id', '')
        try:
            plan = await plan_song_response(
                self.catalog, self.files, song_id, request.headers.get(hdrs.RANGE)
            )
        except RequestError as e:
            return self._error_response(request, e)
        except Exception as e:
            logger.exception(f"Unexpected error resolving song {song_id}")
            return self._error_response(request, InternalError(f"Error serving file: {e}"))
        return await self._stream(request, plan)

    async def handle_art(self, request: web.Request) -> web.StreamResponse:
        """GET /art/{song_id}"""
        song_id = request.match_info.get('song_id', '')
        try:
            plan = await plan_art_response(
                self.catalog, self.files, song_id, self.config.ART_CONTENT_TYPE
            )
        except RequestError as e:
            return self._error_response(request, e)
        except Exception as e:
            logger.exception(f"Unexpected error resolving art {song_id}")
            return self._error_response(request, InternalError(f"Error serving art: {e}"))
        return await self._stream(request, plan)

    async def _stream(self, request: web.Request, plan: StreamPlan) -> web.StreamResponse:
        source = plan.source
        self._open_sources.add(source)
        if plan.window is None:
            logger.info(f"{request.remote} {request.path}: full {source.size} bytes")
        else:
            logger.info(f"{request.remote} {request.path}: {plan.window.content_range(source.size)}")
        try:
            return await stream_source(
                request, source, plan.content_type, plan.window,
                chunk_size=self.config.CHUNK_SIZE,
                write_timeout=self.config.WRITE_TIMEOUT,
            )
        except RequestError as e:
            return self._error_response(request, e)
        except Exception as e:
            logger.exception(f"Unexpected error streaming {request.path}")
            return self._error_response(request, InternalError(f"Error serving file: {e}"))
        finally:
            source.close()
            self._open_sources.discard(source)

    @staticmethod
    def _error_response(request: web.Request, error: RequestError) -> web.Response:
        if error.status >= 500:
            logger.error(f"{request.remote} {request.path}: {error.status} {error.message}")
        else:
            logger.warning(f"{request.remote} {request.path}: {error.status} {error.message}")
        return web.Response(status=error.status, text=error.message, headers=error.headers)


# ============================================================================
# Discovery - mDNS
# ============================================================================

class ServiceAdvertiser:
    """Announces the server as an _http._tcp Zeroconf service."""

    SERVICE_TYPE = "_http._tcp.local."

    def __init__(self, config: ServerConfig):
        self.config = config
        self.zeroconf: Optional[AsyncZeroconf] = None
        self.service_info: Optional[ServiceInfo] = None
        self.registered = False

    async def start(self, ip: str, port: int):
        """Start mDNS advertising on the interface owning ``ip``. Failures are logged, never raised."""
        try:
            self.zeroconf = AsyncZeroconf(interfaces=[ip])
            self.service_info = ServiceInfo(
                self.SERVICE_TYPE,
                f"{self.config.SERVER_NAME}.{self.SERVICE_TYPE}",
                addresses=[socket.inet_aton(ip)],
                port=port,
                properties={
                    "version": self.config.VERSION,
                    "path": "/song/",
                },
            )
            announce = await self.zeroconf.async_register_service(
                self.service_info, allow_name_change=True
            )
            await announce
            self.registered = True
            logger.info(f"mDNS: {self.service_info.name} on {ip}:{port}")
        except Exception as e:
            logger.error(f"mDNS error: {e}")
            await self.stop()

    async def stop(self):
        """Stop mDNS advertising."""
        if self.zeroconf is None:
            return
        try:
            if self.registered:
                goodbye = await self.zeroconf.async_unregister_service(self.service_info)
                await goodbye
        except Exception as e:
            logger.warning(f"mDNS unregister failed: {e}")
        finally:
            await self.zeroconf.async_close()
            self.zeroconf = None
            self.service_info = None
            self.registered = False


# ============================================================================
# Lifecycle
# ============================================================================

class ServerLifecycle:
    """
    Starts and stops the listening socket and publishes ServerState.

    start() either fully succeeds (state running, address published) or
    raises ServerStartError with everything it acquired released again.
    """

    def __init__(self, server: MediaHttpServer, config: ServerConfig = None,
                 state: ServerState = None,
                 address_resolver: Callable[[], Optional[str]] = resolve_lan_ipv4,
                 advertiser: ServiceAdvertiser = None):
        self.server = server
        self.config = config or server.config
        self.state = state or ServerState()
        self.address_resolver = address_resolver
        self.advertiser = advertiser or ServiceAdvertiser(self.config)
        self._runner: Optional[web.AppRunner] = None

    @property
    def is_running(self) -> bool:
        return self.state.is_running

    @property
    def bound_address(self) -> Optional[str]:
        return self.state.bound_address

    async def start(self) -> str:
        """Bind and serve. Returns the advertised http://ip:port address."""
        if self._runner is not None:
            return self.state.bound_address

        ip = self.address_resolver()
        if ip is None:
            raise ServerStartError("No LAN IPv4 address available")

        runner = web.AppRunner(
            self.server.build_app(),
            shutdown_timeout=self.config.SHUTDOWN_GRACE,
        )
        try:
            await runner.setup()
            site = web.TCPSite(runner, self.config.HOST, self.config.PORT)
            await site.start()
        except Exception as e:
            await runner.cleanup()
            raise ServerStartError(
                f"Cannot bind {self.config.HOST}:{self.config.PORT}: {e}"
            ) from e

        port = self._bound_port(runner)
        address = f"http://{ip}:{port}"
        self._runner = runner

        if self.config.ENABLE_MDNS:
            await self.advertiser.start(ip, port)

        self.state.set_running(address)
        logger.info(f"Serving on {address}")
        return address

    def _bound_port(self, runner: web.AppRunner) -> int:
        for addr in runner.addresses:
            if isinstance(addr, tuple):
                return addr[1]
        return self.config.PORT

    async def stop(self):
        """
        Stop accepting connections, give in-flight responses SHUTDOWN_GRACE
        seconds, then close whatever sources are still open.
        """
        if self._runner is not None:
            logger.info("Shutting down...")
            if self.config.ENABLE_MDNS:
                await self.advertiser.stop()
            try:
                await self._runner.cleanup()
            finally:
                self._runner = None
                leaked = self.server.close_open_sources()
                if leaked:
                    logger.warning(f"Force-closed {leaked} open source(s) after grace period")
        self.state.reset()


def build_lifecycle(config: ServerConfig, state: ServerState = None) -> ServerLifecycle:
    """Wire the default library catalog and local file access."""
    catalog = LibraryCatalog(config.LIBRARY_PATH, config.SONG_CONTENT_TYPE)
    server = MediaHttpServer(catalog, LocalFileAccess(), config)
    return ServerLifecycle(server, config, state)
