__all__ = [
    'RedisQueryError',
    'EmptyCommandError',
    'ParsingLimitExceededError',
    'NotConnectedError',
    'TransportError',
    'ConnectionClosedError',
    'TimeoutError',
    'NoReplyError',
    'ProtocolError',
    'MalformedReplyError',
    'UnknownReplyFormatError',
    'ReplyError',
    'ServerError',
    'MaxClientsError',
    'AuthError',
    'ReadOnlyError',
    ]


class RedisQueryError(Exception):
    """Base exception class for redisquery exceptions."""


class EmptyCommandError(RedisQueryError):
    """Raised when a command line holds nothing that could be sent."""


class ParsingLimitExceededError(RedisQueryError):
    """Raised when quoted spans of a command line can not be resolved."""


class NotConnectedError(RedisQueryError):
    """Raised when a command is issued on a closed connection."""


class TransportError(RedisQueryError):
    """Raised when the underlying socket fails to send or receive."""


class ConnectionClosedError(TransportError):
    """Raised if connection was closed while a reply was awaited."""


class TimeoutError(RedisQueryError):
    """Raised when no reply arrives within the configured timeout."""


class NoReplyError(RedisQueryError):
    """Raised when an empty buffer is handed over as a reply."""


class ProtocolError(RedisQueryError):
    """Raised when protocol error occurs."""


class MalformedReplyError(ProtocolError):
    """Raised when a reply contradicts its own header."""


class UnknownReplyFormatError(ProtocolError):
    """Raised for replies starting with an unknown marker byte."""


class ReplyError(RedisQueryError):
    """Raised for redis error replies (-ERR)."""

    MATCH_REPLY = None

    def __new__(cls, msg, *args):
        for klass in cls.__subclasses__():
            if msg and klass.MATCH_REPLY and msg.startswith(klass.MATCH_REPLY):
                return klass(msg, *args)
        return super().__new__(cls, msg, *args)


ServerError = ReplyError


class MaxClientsError(ReplyError):
    """Raised for redis server when the maximum number of client has been
    reached."""

    MATCH_REPLY = "ERR max number of clients reached"


class AuthError(ReplyError):
    """Raised when authentication errors occurs."""

    MATCH_REPLY = ("NOAUTH ", "ERR invalid password", "WRONGPASS ",
                   "ERR Client sent AUTH")


class ReadOnlyError(ReplyError):
    """Raised from replica when read-only mode is enabled"""

    MATCH_REPLY = "READONLY "
