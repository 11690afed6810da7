import os
import shutil
import tempfile

import pytest
import pytest_asyncio

import redisquery
from _testutils import DatagramServer, StreamServer


@pytest.fixture
def sock_dir():
    # unix socket paths are limited to ~100 bytes, keep them short
    path = tempfile.mkdtemp(prefix='rq')
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest_asyncio.fixture
async def server(sock_dir):
    srv = await StreamServer(os.path.join(sock_dir, 'redis.sock')).start()
    yield srv
    await srv.stop()


@pytest_asyncio.fixture
async def tcp_server():
    srv = await StreamServer(('127.0.0.1', 0)).start()
    yield srv
    await srv.stop()


@pytest_asyncio.fixture
async def dgram_server(sock_dir):
    srv = await DatagramServer(os.path.join(sock_dir, 'redis.dgram')).start()
    yield srv
    await srv.stop()


@pytest_asyncio.fixture
async def create_redis():
    """Wrapper around redisquery.create_redis closing clients on teardown."""
    clients = []

    async def f(address, **kwargs):
        redis = await redisquery.create_redis(address, **kwargs)
        clients.append(redis)
        return redis

    yield f
    for redis in clients:
        await redis.disconnect()
