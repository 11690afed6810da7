import re
import threading
import weakref

from .bridge import LoopThread
from .connection import create_connection, DEFAULT_BUFSZ
from .errors import NotConnectedError, RedisQueryError, ReplyError
from .log import enable_debug, logger
from .parser import Reply, decode
from .tokenizer import tokenize
from .util import encode, parse_url

__all__ = ['AsyncRedis', 'Redis', 'create_redis', 'DEFAULT_ADDRESS']

DEFAULT_ADDRESS = '/tmp/redis.sock'

_RE_OK = re.compile(r'OK', re.I)


async def create_redis(address=DEFAULT_ADDRESS, **kwargs):
    """Creates and connects an AsyncRedis client.

    Accepts the same keyword arguments as AsyncRedis.
    """
    redis = AsyncRedis(address, **kwargs)
    await redis.connect()
    return redis


class AsyncRedis:
    """Redis client taking whole command lines.

    Usage::

        redis = await create_redis('/tmp/redis.sock')
        reply = await redis.execute('SET greeting "hello world"')
        if reply.ok:
            ...

    ``status`` and ``rows`` mirror the outcome of the last command.
    """

    def __init__(self, address=DEFAULT_ADDRESS, *, password=None, pw=None,
                 db=0, timeout=None, datagram=False, bufsz=DEFAULT_BUFSZ,
                 debug=False):
        if isinstance(address, list):
            address = tuple(address)
        self.address = address
        self.password = password if password is not None else pw
        self.db = int(db)
        self.timeout = timeout
        self.datagram = datagram
        self.bufsz = int(bufsz)
        self.status = ''
        self.rows = 0
        self._conn = None
        if debug:
            enable_debug()

    @classmethod
    def from_url(cls, url, **kwargs):
        address, options = parse_url(url)
        options.update(kwargs)
        return cls(address, **options)

    def __repr__(self):
        return '<{} address={!r} db={}>'.format(
            self.__class__.__name__, self.address, self.db)

    @property
    def connection(self):
        """RedisConnection instance or None."""
        return self._conn

    @property
    def closed(self):
        return self._conn is None or self._conn.closed

    async def connect(self):
        """Open the connection, authenticate and select the database.

        Raises TransportError if the server can not be reached and the
        server's error (AuthError, ReplyError, ...) if the handshake fails.
        """
        if not self.closed:
            return self
        self._conn = await create_connection(
            self.address, datagram=self.datagram, timeout=self.timeout,
            bufsz=self.bufsz)
        try:
            if self.password:
                await self._handshake('AUTH', self.password)
            await self._handshake('SELECT', str(self.db))
        except RedisQueryError:
            conn, self._conn = self._conn, None
            conn.close()
            await conn.wait_closed()
            raise
        self.status = ''
        self.rows = 0
        return self

    async def _handshake(self, *tokens):
        reply = await self._execute(tokens)
        self._settle(reply)
        if not reply.ok:
            raise reply.error
        if not _RE_OK.search(reply.status):
            raise ReplyError(reply.status or "Unexpected reply to {}"
                             .format(tokens[0]))

    async def execute(self, command):
        """Execute a command line and return its Reply.

        Never raises for failures of the command itself; inspect
        ``reply.ok`` / ``reply.error`` instead.
        """
        self.rows = 0
        try:
            tokens = tokenize(command)
        except RedisQueryError as exc:
            return self._settle(Reply.failure(exc))
        return self._settle(await self._execute(tokens))

    async def query(self, command):
        """Execute a command line; return decoded rows or None on failure.

        The reason of a failure is left in ``status``.
        """
        reply = await self.execute(command)
        return reply.data if reply.ok else None

    async def _execute(self, tokens):
        if self.closed:
            return Reply.failure(NotConnectedError("No connection"))
        try:
            buf = await self._conn.send_and_await(encode(tokens))
        except RedisQueryError as exc:
            return Reply.failure(exc)
        return decode(buf)

    def _settle(self, reply):
        self.status = reply.status
        self.rows = reply.rows
        if reply.error is not None:
            logger.debug("Command failed: %s", reply.status)
        return reply

    async def disconnect(self):
        """Close the connection and reset status; safe to call repeatedly."""
        conn, self._conn = self._conn, None
        if conn is not None:
            conn.close()
            await conn.wait_closed()
        self.status = ''
        self.rows = 0

    async def __aenter__(self):
        return await self.connect()

    async def __aexit__(self, *exc_info):
        await self.disconnect()


class Redis:
    """Blocking Redis client taking whole command lines.

    Usage::

        with Redis('/tmp/redis.sock', password='secret') as redis:
            rows = redis.query('LRANGE mylist 0 -1')
            if rows is None:
                print(redis.status)

    The asyncio machinery runs in a private event loop thread; every call
    blocks the caller until its reply arrives. Calls from several threads
    are serialized.
    """

    def __init__(self, address=DEFAULT_ADDRESS, **kwargs):
        self._client = AsyncRedis(address, **kwargs)
        self._runner = LoopThread()
        self._lock = threading.Lock()
        # a discarded client must not leave its loop thread behind
        self._finalizer = weakref.finalize(
            self, _shutdown, self._client, self._runner)

    @classmethod
    def from_url(cls, url, **kwargs):
        address, options = parse_url(url)
        options.update(kwargs)
        return cls(address, **options)

    def __repr__(self):
        return '<{} address={!r} db={}>'.format(
            self.__class__.__name__, self.address, self.db)

    @property
    def address(self):
        return self._client.address

    @property
    def db(self):
        return self._client.db

    @property
    def status(self):
        """Last human-readable message: "OK", an error message, or empty."""
        return self._client.status

    @property
    def rows(self):
        """Number of values produced by the last command."""
        return self._client.rows

    @property
    def closed(self):
        return self._client.closed

    def connect(self):
        with self._lock:
            self._runner.start()
            try:
                self._runner.run(self._client.connect())
            except BaseException:
                self._runner.stop()
                raise
        return self

    def execute(self, command):
        """Execute a command line and return its Reply."""
        with self._lock:
            if not self._runner.is_running():
                self._client.rows = 0
                return self._client._settle(
                    Reply.failure(NotConnectedError("No connection")))
            return self._runner.run(self._client.execute(command))

    def query(self, command):
        """Execute a command line; return decoded rows or None on failure."""
        reply = self.execute(command)
        return reply.data if reply.ok else None

    def disconnect(self):
        with self._lock:
            if self._runner.is_running():
                try:
                    self._runner.run(self._client.disconnect())
                finally:
                    self._runner.stop()
            self._client.status = ''
            self._client.rows = 0

    def __enter__(self):
        return self.connect()

    def __exit__(self, *exc_info):
        self.disconnect()


def _shutdown(client, runner):
    """Close the connection and stop the loop of a collected Redis."""
    try:
        if runner.is_running() and not runner.is_current():
            runner.run(client.disconnect())
    finally:
        runner.stop()
