"""Reply decoding.

A reply buffer holds exactly one complete server reply. It is decoded
line by line into a :class:`Reply`, which carries the decoded rows
together with the human-readable status and the row count.
"""
from .errors import (
    RedisQueryError,
    NoReplyError,
    MalformedReplyError,
    UnknownReplyFormatError,
    ReplyError,
    )

__all__ = [
    'Reply',
    'decode',
    'find_reply_end',
    ]


class Reply:
    """Outcome of a single command.

    ``data`` is the list of decoded values (None on failure), ``status``
    the last human-readable message and ``rows`` the number of values
    produced. ``error`` holds the failure, if any.
    """

    __slots__ = ('data', 'status', 'rows', 'error')

    def __init__(self, data=None, status='', rows=0, error=None):
        self.data = data
        self.status = status
        self.rows = rows
        self.error = error

    @classmethod
    def failure(cls, error):
        status = str(error.args[0]) if error.args else type(error).__name__
        return cls(None, status, 0, error)

    @property
    def ok(self):
        return self.error is None

    def unwrap(self):
        """Return decoded data or raise the error the reply carries."""
        if self.error is not None:
            raise self.error
        return self.data

    def __bool__(self):
        return self.ok

    def __eq__(self, other):
        if not isinstance(other, Reply):
            return NotImplemented
        return (self.data, self.status, self.rows, self.error) == (
            other.data, other.status, other.rows, other.error)

    def __repr__(self):
        if self.error is not None:
            return '<Reply error={!r}>'.format(self.error)
        return '<Reply rows={} status={!r} data={!r}>'.format(
            self.rows, self.status, self.data)


def decode(buf):
    """Decode one complete reply buffer.

    Never raises for malformed input; the returned Reply carries
    the error instead.
    """
    try:
        return _decode(buf)
    except RedisQueryError as exc:
        return Reply.failure(exc)


def _decode(buf):
    if not buf:
        raise NoReplyError("No response from Redis server")
    if isinstance(buf, str):
        buf = buf.encode('utf-8')
    buf = bytes(buf)
    if not buf.strip():
        raise NoReplyError("No response from Redis server")

    if buf.endswith(b'\r\n'):
        buf = buf[:-2]
    lines = buf.lstrip().split(b'\r\n')
    first = _text(lines.pop(0))
    marker, payload = first[:1], first[1:]

    try:
        handler = _HANDLERS[marker]
    except KeyError:
        raise UnknownReplyFormatError("Unknown Redis response format")
    return handler(payload, iter(lines))


def _text(line):
    return line.decode('utf-8', errors='replace')


def _strip_message(payload):
    return payload[1:] if payload.startswith(' ') else payload


def _parse_int(payload):
    try:
        return int(payload.strip())
    except ValueError:
        raise MalformedReplyError(
            "Invalid Redis response. Expected integer, got: {!r}"
            .format(payload))


def _read_bulk(size, lines):
    """Take data lines until size bytes are read.

    A bulk string may itself contain CRLF, so its data can span several
    lines. Returns None if the lines run out first.
    """
    data = next(lines, None)
    if data is None:
        return '' if size == 0 else None
    while len(data) < size:
        line = next(lines, None)
        if line is None:
            return None
        data += b'\r\n' + line
    if len(data) != size:
        raise MalformedReplyError(
            "Invalid Redis response. Expected {} bytes of data, got: {}"
            .format(size, len(data)))
    return _text(data)


def _unexpected(line):
    return MalformedReplyError(
        "Invalid Redis response. Unexpected line: {!r}".format(_text(line)))


def _decode_error(payload, lines):
    message = _strip_message(payload) or "Error reply from Redis server"
    return Reply(None, message, 0, ReplyError(message))


def _decode_status(payload, lines):
    return Reply([], _strip_message(payload), 0)


def _decode_integer(payload, lines):
    return Reply([_parse_int(payload)], 'OK', 1)


def _decode_bulk(payload, lines):
    size = _parse_int(payload)
    if size < 0:
        return Reply([None], 'OK', 0)
    value = _read_bulk(size, lines)
    if value is None:
        raise MalformedReplyError(
            "Invalid Redis response. Expected {} bytes of data"
            .format(size))
    extra = next(lines, None)
    if extra is not None:
        raise _unexpected(extra)
    return Reply([value], 'OK', 1)


def _decode_multibulk(payload, lines):
    expected = _parse_int(payload)
    if expected < 0:
        return Reply([None], 'OK', 0)

    result = []
    for line in lines:
        marker, rest = line[:1], _text(line[1:])
        if marker == b'$':
            size = _parse_int(rest)
            if size < 0:
                result.append(None)
                continue
            value = _read_bulk(size, lines)
            if value is None:
                # truncated, left to the count check below
                break
            result.append(value)
        elif marker == b':':
            result.append(_parse_int(rest))
        elif marker == b'+':
            result.append(_strip_message(rest))
        else:
            raise _unexpected(line)

    if len(result) != expected:
        error = MalformedReplyError(
            "Invalid Redis response. Expected {} results, but got: {}"
            .format(expected, len(result)))
        return Reply.failure(error)
    return Reply(result, 'OK', expected)


_HANDLERS = {
    '-': _decode_error,
    '+': _decode_status,
    ':': _decode_integer,
    '$': _decode_bulk,
    '*': _decode_multibulk,
}


def find_reply_end(buf, pos=0):
    """Return the offset just past the first complete reply in buf.

    Returns -1 while more data is needed. Used to cut a byte stream
    into single replies; datagram sockets deliver them whole.
    """
    end = buf.find(b'\r\n', pos)
    if end < 0:
        return -1
    marker = buf[pos:pos + 1]
    if marker in (b'-', b'+', b':'):
        return end + 2
    try:
        size = int(buf[pos + 1:end])
    except ValueError:
        # let the decoder report it
        return end + 2
    pos = end + 2
    if marker == b'$':
        if size < 0:
            return pos
        if len(buf) < pos + size + 2:
            return -1
        return pos + size + 2
    if marker == b'*':
        for _ in range(size):
            pos = find_reply_end(buf, pos)
            if pos < 0:
                return -1
        return pos
    return pos
