import asyncio
import enum
import socket

import async_timeout

from .errors import (
    ConnectionClosedError,
    NotConnectedError,
    TimeoutError,
    TransportError,
    )
from .log import connection_logger as logger
from .parser import find_reply_end
from .util import _NOTSET, _set_exception

__all__ = ['create_connection', 'RedisConnection']

DEFAULT_BUFSZ = 64 * 1024 * 1024


@enum.unique
class _State(enum.IntEnum):
    not_connected = enum.auto()
    idle = enum.auto()
    awaiting_reply = enum.auto()
    closed = enum.auto()


async def create_connection(address, *, datagram=False, timeout=None,
                            bufsz=DEFAULT_BUFSZ, loop=None):
    """Creates redis connection.

    Opens connection to Redis server specified by address argument.
    Address argument can be one of the following:
    * A tuple representing (host, port) pair for TCP connections;
    * A string representing a unix domain socket path.

    With ``datagram=True`` the address must be a unix socket path and every
    reply is expected to arrive as a single datagram.

    ``timeout`` is the default number of seconds to wait for a reply
    (None waits forever); ``bufsz`` bounds the size of a single reply.

    Return value is RedisConnection instance.
    """
    if loop is None:
        loop = asyncio.get_event_loop()
    conn = RedisConnection(address, timeout=timeout, loop=loop)

    try:
        if datagram:
            if not isinstance(address, str):
                raise ValueError(
                    "Datagram mode needs a unix socket path, got {!r}"
                    .format(address))
            sock = _unix_datagram_socket(address)
            transport, _ = await loop.create_datagram_endpoint(
                lambda: _DatagramReplyProtocol(conn, bufsz), sock=sock)
        elif isinstance(address, (list, tuple)):
            host, port = address
            transport, _ = await loop.create_connection(
                lambda: _StreamReplyProtocol(conn, bufsz), host, port)
        else:
            transport, _ = await loop.create_unix_connection(
                lambda: _StreamReplyProtocol(conn, bufsz), address)
    except OSError as exc:
        raise TransportError(
            "Could not connect to Redis server: {}".format(exc)) from exc

    conn._attach(transport, datagram=datagram)
    return conn


def _unix_datagram_socket(path):
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM)
    try:
        sock.setblocking(False)
        # autobind, so the server has an address to reply to
        sock.bind('')
        sock.connect(path)
    except OSError:
        sock.close()
        raise
    return sock


class _StreamReplyProtocol(asyncio.Protocol):
    """Cuts a byte stream into single replies."""

    def __init__(self, connection, bufsz):
        self._connection = connection
        self._bufsz = bufsz
        self._buf = bytearray()
        self._transport = None

    def connection_made(self, transport):
        self._transport = transport
        sock = transport.get_extra_info('socket')
        if sock is not None and sock.family in (socket.AF_INET,
                                                socket.AF_INET6):
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)

    def data_received(self, data):
        self._buf.extend(data)
        while self._buf:
            end = find_reply_end(self._buf)
            if end < 0 and len(self._buf) <= self._bufsz:
                break
            if end < 0 or end > self._bufsz:
                self._buf.clear()
                self._connection._on_error(TransportError(
                    "Reply exceeds buffer size of {} bytes"
                    .format(self._bufsz)))
                self._transport.close()
                break
            message = bytes(self._buf[:end])
            del self._buf[:end]
            self._connection._on_message(message)

    def connection_lost(self, exc):
        self._connection._on_lost(exc)


class _DatagramReplyProtocol(asyncio.DatagramProtocol):
    """Treats every datagram as one complete reply."""

    def __init__(self, connection, bufsz):
        self._connection = connection
        self._bufsz = bufsz

    def connection_made(self, transport):
        sock = transport.get_extra_info('socket')
        if sock is not None:
            try:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_RCVBUF,
                                self._bufsz)
            except OSError as exc:
                logger.debug("Could not set receive buffer size: %s", exc)
        # selector transports read at most max_size bytes per datagram and
        # recvfrom drops the rest, so a whole reply of bufsz bytes must fit
        if hasattr(transport, 'max_size'):
            transport.max_size = self._bufsz

    def datagram_received(self, data, addr):
        self._connection._on_message(data)

    def error_received(self, exc):
        self._connection._on_error(exc)

    def connection_lost(self, exc):
        self._connection._on_lost(exc)


class RedisConnection:
    """Redis connection with a single outstanding request.

    Every request is answered by the next inbound reply; requests issued
    concurrently are queued behind an asyncio.Lock.
    """

    def __init__(self, address, *, timeout=None, loop=None):
        if loop is None:
            loop = asyncio.get_event_loop()
        self._address = address
        self._timeout = timeout
        self._loop = loop
        self._transport = None
        self._datagram = False
        self._state = _State.not_connected
        self._lock = asyncio.Lock()
        # pending-reply slot
        self._waiter = None
        self._pending = None
        self._close_waiter = loop.create_future()

    def __repr__(self):
        return '<RedisConnection [{}] address={!r}>'.format(
            self._state.name, self._address)

    def _attach(self, transport, *, datagram=False):
        self._transport = transport
        self._datagram = datagram
        if self._state == _State.not_connected:
            self._state = _State.idle

    @property
    def address(self):
        """Redis server address, either host-port tuple or str."""
        return self._address

    @property
    def timeout(self):
        """Default reply timeout in seconds (None waits forever)."""
        return self._timeout

    @property
    def closed(self):
        """True if connection is closed."""
        return (self._state in (_State.not_connected, _State.closed) or
                self._transport is None or self._transport.is_closing())

    @property
    def in_flight(self):
        """True while a request waits for its reply."""
        return self._state == _State.awaiting_reply

    async def send_and_await(self, frame, *, timeout=_NOTSET):
        """Send an encoded request and wait for exactly one reply.

        Raises NotConnectedError if the connection is closed,
        TransportError if sending fails or the socket reports an error,
        ConnectionClosedError if the connection goes away while waiting
        and TimeoutError if no reply arrives in time.
        """
        if timeout is _NOTSET:
            timeout = self._timeout
        if self.closed:
            raise NotConnectedError("No connection")

        async with self._lock:
            if self.closed:
                raise NotConnectedError("No connection")
            if self._pending is not None:
                logger.warning("Discarding unsolicited reply %r",
                               self._pending)
                self._pending = None

            waiter = self._loop.create_future()
            self._waiter = waiter
            self._state = _State.awaiting_reply
            try:
                logger.debug("Redis command: %r", frame)
                self._write(frame)
                # late replies must never answer a later request
                try:
                    async with async_timeout.timeout(timeout):
                        return await waiter
                except asyncio.TimeoutError:
                    self.close()
                    raise TimeoutError(
                        "No response from Redis server within {} seconds"
                        .format(timeout)) from None
                except asyncio.CancelledError:
                    self.close()
                    raise
            finally:
                self._waiter = None
                if self._state == _State.awaiting_reply:
                    self._state = _State.idle

    def _write(self, frame):
        try:
            if self._datagram:
                self._transport.sendto(frame)
            else:
                self._transport.write(frame)
        except OSError as exc:
            raise TransportError(
                "Failed to send command: {}".format(exc)) from exc

    def _on_message(self, data):
        logger.debug("Received message from Redis server: %r", data)
        waiter, self._waiter = self._waiter, None
        if waiter is not None and not waiter.done():
            waiter.set_result(data)
        else:
            self._pending = data

    def _on_error(self, exc):
        logger.warning("Socket error: %s", exc)
        if not isinstance(exc, TransportError):
            exc = TransportError("Socket error: {}".format(exc))
        waiter, self._waiter = self._waiter, None
        if waiter is not None:
            _set_exception(waiter, exc)

    def _on_lost(self, exc):
        if exc is not None:
            logger.debug("Connection lost: %s", exc)
        self._do_close(ConnectionClosedError(
            "Connection to Redis server lost"
            + (": {}".format(exc) if exc is not None else "")))
        if not self._close_waiter.done():
            self._close_waiter.set_result(None)

    def close(self):
        """Close connection; an outstanding request fails at once."""
        self._do_close(ConnectionClosedError("Connection closed"))

    def _do_close(self, exc):
        if self._state == _State.closed:
            return
        self._state = _State.closed
        transport, self._transport = self._transport, None
        self._pending = None
        waiter, self._waiter = self._waiter, None
        if waiter is not None:
            _set_exception(waiter, exc)
        if transport is not None:
            transport.close()
        else:
            if not self._close_waiter.done():
                self._close_waiter.set_result(None)

    async def wait_closed(self):
        """Coroutine waiting until connection is closed."""
        await asyncio.shield(self._close_waiter)
