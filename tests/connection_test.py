import asyncio
import logging
import os
from unittest import mock

import pytest

from redisquery.connection import RedisConnection, create_connection
from redisquery.errors import (
    ConnectionClosedError,
    NotConnectedError,
    TimeoutError,
    TransportError,
    )
from redisquery.parser import decode
from redisquery.util import encode_command


@pytest.mark.asyncio
async def test_connect_unix(server):
    conn = await create_connection(server.address)
    assert not conn.closed
    assert conn.address == server.address
    assert 'RedisConnection' in repr(conn)

    res = await conn.send_and_await(encode_command('PING'))
    assert res == b'+PONG\r\n'
    assert server.requests == [['PING']]

    conn.close()
    await conn.wait_closed()
    assert conn.closed


@pytest.mark.asyncio
async def test_connect_tcp(tcp_server):
    conn = await create_connection(tcp_server.address)
    res = await conn.send_and_await(encode_command('ECHO', 'hello world'))
    assert res == b'$11\r\nhello world\r\n'
    conn.close()
    await conn.wait_closed()


@pytest.mark.asyncio
async def test_connect_datagram(dgram_server):
    conn = await create_connection(dgram_server.address, datagram=True)
    assert conn._datagram
    res = await conn.send_and_await(encode_command('SET', 'k', 'a b'))
    assert res == b'+OK\r\n'
    res = await conn.send_and_await(encode_command('GET', 'k'))
    assert res == b'$3\r\na b\r\n'
    assert dgram_server.requests == [['SET', 'k', 'a b'], ['GET', 'k']]
    conn.close()
    await conn.wait_closed()


@pytest.mark.asyncio
async def test_connect_refused(sock_dir):
    path = os.path.join(sock_dir, 'missing.sock')
    with pytest.raises(TransportError, match="Could not connect"):
        await create_connection(path)
    with pytest.raises(TransportError, match="Could not connect"):
        await create_connection(path, datagram=True)


@pytest.mark.asyncio
async def test_datagram_needs_path():
    with pytest.raises(ValueError):
        await create_connection(('localhost', 6379), datagram=True)


@pytest.mark.asyncio
async def test_replies_follow_request_order(server):
    conn = await create_connection(server.address)
    for value in ('first', 'second', 'third'):
        res = await conn.send_and_await(encode_command('ECHO', value))
        assert res == b'$%d\r\n%s\r\n' % (len(value), value.encode())
    conn.close()


@pytest.mark.asyncio
async def test_concurrent_requests_are_serialized(server):
    conn = await create_connection(server.address)
    values = ['v{}'.format(i) for i in range(10)]
    res = await asyncio.gather(*(
        conn.send_and_await(encode_command('ECHO', v)) for v in values))
    assert res == [b'$2\r\n%s\r\n' % v.encode() for v in values]
    assert server.requests == [['ECHO', v] for v in values]
    conn.close()


@pytest.mark.asyncio
async def test_reply_split_across_packets(server):
    server.replies.append(None)
    conn = await create_connection(server.address)
    proto = conn._transport.get_protocol()
    task = asyncio.ensure_future(
        conn.send_and_await(encode_command('GET', 'k')))
    await asyncio.sleep(0)
    proto.data_received(b'*2\r\n$1\r\na')
    assert not task.done()
    proto.data_received(b'\r\n$-1\r\n')
    assert await task == b'*2\r\n$1\r\na\r\n$-1\r\n'
    conn.close()


@pytest.mark.asyncio
async def test_two_replies_in_one_packet(server):
    server.replies.append(None)
    conn = await create_connection(server.address)
    proto = conn._transport.get_protocol()
    task = asyncio.ensure_future(
        conn.send_and_await(encode_command('PING')))
    await asyncio.sleep(0)
    proto.data_received(b'+PONG\r\n:1\r\n')
    assert await task == b'+PONG\r\n'
    # the second reply was not asked for
    assert conn._pending == b':1\r\n'
    conn.close()


@pytest.mark.asyncio
async def test_stale_reply_is_discarded(dgram_server, caplog):
    conn = await create_connection(dgram_server.address, datagram=True)
    conn._on_message(b'+STALE\r\n')
    assert conn._pending == b'+STALE\r\n'

    with caplog.at_level(logging.WARNING, logger='redisquery'):
        res = await conn.send_and_await(encode_command('PING'))
    assert res == b'+PONG\r\n'
    assert conn._pending is None
    assert "Discarding unsolicited reply" in caplog.text
    conn.close()


@pytest.mark.asyncio
async def test_waiter_is_one_shot(server):
    conn = await create_connection(server.address)
    res = await conn.send_and_await(encode_command('PING'))
    assert res == b'+PONG\r\n'
    assert conn._waiter is None
    assert not conn.in_flight
    conn.close()


@pytest.mark.asyncio
async def test_timeout(server):
    server.delay = 0.5
    conn = await create_connection(server.address, timeout=0.05)
    assert conn.timeout == 0.05
    with pytest.raises(TimeoutError):
        await conn.send_and_await(encode_command('PING'))
    # a late reply must never answer a later request
    assert conn.closed
    with pytest.raises(NotConnectedError):
        await conn.send_and_await(encode_command('PING'))


@pytest.mark.asyncio
async def test_timeout_override(server):
    server.delay = 0.5
    conn = await create_connection(server.address)
    with pytest.raises(TimeoutError):
        await conn.send_and_await(encode_command('PING'), timeout=0.05)
    conn.close()


@pytest.mark.asyncio
async def test_not_connected():
    conn = RedisConnection('/tmp/nowhere.sock')
    assert conn.closed
    with pytest.raises(NotConnectedError):
        await conn.send_and_await(encode_command('PING'))


@pytest.mark.asyncio
async def test_send_after_close(server):
    conn = await create_connection(server.address)
    conn.close()
    conn.close()
    with pytest.raises(NotConnectedError):
        await conn.send_and_await(encode_command('PING'))
    await conn.wait_closed()


@pytest.mark.asyncio
async def test_close_fails_outstanding_request(server):
    server.replies.append(None)
    conn = await create_connection(server.address)
    task = asyncio.ensure_future(
        conn.send_and_await(encode_command('BLPOP', 'list', '0')))
    await asyncio.sleep(0.01)
    assert conn.in_flight
    conn.close()
    with pytest.raises(ConnectionClosedError):
        await task
    await conn.wait_closed()


@pytest.mark.asyncio
async def test_server_disconnect_fails_outstanding_request(server):
    server.replies.append(None)
    conn = await create_connection(server.address)
    task = asyncio.ensure_future(
        conn.send_and_await(encode_command('BLPOP', 'list', '0')))
    await asyncio.sleep(0.01)
    server.drop_clients()
    with pytest.raises(ConnectionClosedError):
        await task
    await conn.wait_closed()
    assert conn.closed


@pytest.mark.asyncio
async def test_socket_error_fails_outstanding_request(dgram_server):
    dgram_server.replies.append(None)
    conn = await create_connection(dgram_server.address, datagram=True)
    task = asyncio.ensure_future(
        conn.send_and_await(encode_command('PING')))
    await asyncio.sleep(0.01)
    conn._transport.get_protocol().error_received(
        ConnectionRefusedError(111, 'Connection refused'))
    with pytest.raises(TransportError, match="Connection refused"):
        await task
    conn.close()


@pytest.mark.asyncio
async def test_datagram_send_to_vanished_server(dgram_server):
    conn = await create_connection(dgram_server.address, datagram=True)
    await dgram_server.stop()
    os.unlink(dgram_server.address)
    with pytest.raises(TransportError):
        await conn.send_and_await(encode_command('PING'), timeout=1)
    conn.close()


@pytest.mark.asyncio
async def test_reply_over_buffer_size(server):
    conn = await create_connection(server.address, bufsz=16)
    server.replies.append(b'$40\r\n' + b'x' * 40 + b'\r\n')
    with pytest.raises(TransportError, match="exceeds buffer size"):
        await conn.send_and_await(encode_command('GET', 'big'))
    conn.close()


@pytest.mark.asyncio
async def test_cancelled_request_closes_connection(server):
    server.replies.append(None)
    conn = await create_connection(server.address)
    task = asyncio.ensure_future(
        conn.send_and_await(encode_command('BLPOP', 'list', '0')))
    await asyncio.sleep(0.01)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert conn.closed


@pytest.mark.asyncio
async def test_write_failure():
    transport = mock.Mock(spec=asyncio.Transport)
    transport.is_closing.return_value = False
    transport.write.side_effect = BrokenPipeError(32, 'Broken pipe')
    conn = RedisConnection('/tmp/redis.sock')
    conn._attach(transport)
    assert not conn.closed

    with pytest.raises(TransportError, match="Failed to send command"):
        await conn.send_and_await(encode_command('PING'))
    assert not conn.in_flight
    assert conn._waiter is None
    transport.write.assert_called_once_with(bytearray(b'*1\r\n$4\r\nPING\r\n'))


@pytest.mark.asyncio
async def test_datagram_write_uses_sendto():
    # selector datagram transports of Python < 3.12 are not
    # DatagramTransport subclasses and inherit a write() that raises
    transport = mock.Mock(spec=['write', 'sendto', 'is_closing', 'close'])
    transport.is_closing.return_value = False
    transport.write.side_effect = NotImplementedError
    conn = RedisConnection('/tmp/redis.sock')
    conn._attach(transport, datagram=True)

    transport.sendto.side_effect = (
        lambda frame: conn._loop.call_soon(conn._on_message, b'+PONG\r\n'))
    res = await conn.send_and_await(encode_command('PING'))
    assert res == b'+PONG\r\n'
    transport.sendto.assert_called_once()
    assert not transport.write.called


@pytest.mark.asyncio
async def test_datagram_read_size_follows_bufsz(dgram_server):
    conn = await create_connection(dgram_server.address, datagram=True,
                                   bufsz=4096)
    assert conn._transport.max_size == 4096
    conn.close()


@pytest.mark.asyncio
async def test_datagram_reply_over_buffer_size(dgram_server):
    conn = await create_connection(dgram_server.address, datagram=True,
                                   bufsz=32)
    dgram_server.replies.append(b'$100\r\n' + b'x' * 100 + b'\r\n')
    res = await conn.send_and_await(encode_command('GET', 'big'))
    assert len(res) == 32
    assert decode(res).status == (
        "Invalid Redis response. Expected 100 bytes of data")
    conn.close()
