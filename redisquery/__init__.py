from .client import AsyncRedis, Redis, create_redis
from .connection import RedisConnection, create_connection
from .errors import (
    AuthError,
    ConnectionClosedError,
    EmptyCommandError,
    MalformedReplyError,
    MaxClientsError,
    NoReplyError,
    NotConnectedError,
    ParsingLimitExceededError,
    ProtocolError,
    ReadOnlyError,
    RedisQueryError,
    ReplyError,
    ServerError,
    TimeoutError,
    TransportError,
    UnknownReplyFormatError,
)
from .parser import Reply, decode
from .tokenizer import tokenize
from .util import encode, encode_command

__version__ = "0.6.0"

__all__ = [
    "AsyncRedis",
    "AuthError",
    "ConnectionClosedError",
    "create_connection",
    "create_redis",
    "decode",
    "EmptyCommandError",
    "encode",
    "encode_command",
    "MalformedReplyError",
    "MaxClientsError",
    "NoReplyError",
    "NotConnectedError",
    "ParsingLimitExceededError",
    "ProtocolError",
    "ReadOnlyError",
    "Redis",
    "RedisConnection",
    "RedisQueryError",
    "Reply",
    "ReplyError",
    "ServerError",
    "TimeoutError",
    "TransportError",
    "tokenize",
    "UnknownReplyFormatError",
]
