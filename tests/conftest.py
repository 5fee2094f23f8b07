# Shared fixtures: both KV backends without any network.
# - local: RedisBackend over fakeredis
# - remote: UpstashBackend over an httpx.MockTransport speaking the REST command protocol

import fnmatch
import json

import fakeredis
import httpx
import pytest
import pytest_asyncio

from app import create_app
from backends.redis_local import LocalRedisClient, RedisBackend
from backends.upstash import COMPARE_AND_DELETE_SCRIPT, COMPARE_AND_SET_SCRIPT, UpstashBackend

UPSTASH_URL = "https://fake-upstash.test"
UPSTASH_TOKEN = "test-token"


class FakeUpstash:
    """Minimal in-memory stand-in for the Upstash REST endpoint (TTLs are recorded, not enforced)."""

    def __init__(self):
        self.data = {}
        self.ttls = {}
        self.commands = []
        self.status_override = None
        self.command_status = {}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.headers.get("Authorization") != f"Bearer {UPSTASH_TOKEN}":
            return httpx.Response(401, json={"error": "Unauthorized"})
        if self.status_override:
            return httpx.Response(self.status_override, text="upstream failure")
        command = json.loads(request.content)
        self.commands.append(command)
        name = command[0].upper()
        if name in self.command_status:
            return httpx.Response(self.command_status[name], json={"error": f"{name} rejected"})
        handler = getattr(self, f"_cmd_{name.lower()}", None)
        if handler is None:
            return httpx.Response(400, json={"error": f"ERR unknown command '{name}'"})
        return httpx.Response(200, json={"result": handler(*command[1:])})

    def _cmd_get(self, key):
        return self.data.get(key)

    def _cmd_set(self, key, value, *options):
        options = [o.upper() for o in options]
        if "NX" in options and key in self.data:
            return None
        self.data[key] = value
        if "EX" in options:
            self.ttls[key] = int(options[options.index("EX") + 1])
        else:
            self.ttls.pop(key, None)
        return "OK"

    def _cmd_del(self, *keys):
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    def _cmd_keys(self, pattern):
        return [key for key in self.data if fnmatch.fnmatchcase(key, pattern)]

    def _cmd_eval(self, script, numkeys, key, *argv):
        current = self.data.get(key)
        if script == COMPARE_AND_SET_SCRIPT:
            has_expected, expected, value, ttl = argv
            if has_expected == "1" and current != expected:
                return 0
            if has_expected == "0" and current is not None:
                return 0
            self.data[key] = value
            if int(ttl) > 0:
                self.ttls[key] = int(ttl)
            return 1
        if script == COMPARE_AND_DELETE_SCRIPT:
            if current is not None and current == argv[0]:
                return self._cmd_del(key)
            return 0
        raise AssertionError("unexpected script")


@pytest.fixture
def redis_server():
    return fakeredis.FakeServer()


@pytest.fixture
def local_backend(redis_server):
    handle = LocalRedisClient(
        url="redis://fake", factory=lambda: fakeredis.FakeAsyncRedis(server=redis_server, decode_responses=True)
    )
    return RedisBackend(handle)


@pytest.fixture
def fake_upstash():
    return FakeUpstash()


@pytest_asyncio.fixture
async def remote_backend(fake_upstash):
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(fake_upstash),
        base_url=UPSTASH_URL,
        headers={"Authorization": f"Bearer {UPSTASH_TOKEN}"},
    )
    backend = UpstashBackend(UPSTASH_URL, UPSTASH_TOKEN, client=client)
    yield backend
    await backend.close()


@pytest_asyncio.fixture(params=["local", "remote"])
async def backend(request, redis_server, fake_upstash):
    if request.param == "local":
        handle = LocalRedisClient(
            url="redis://fake", factory=lambda: fakeredis.FakeAsyncRedis(server=redis_server, decode_responses=True)
        )
        kv = RedisBackend(handle)
    else:
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(fake_upstash),
            base_url=UPSTASH_URL,
            headers={"Authorization": f"Bearer {UPSTASH_TOKEN}"},
        )
        kv = UpstashBackend(UPSTASH_URL, UPSTASH_TOKEN, client=client)
    yield kv
    await kv.close()


@pytest.fixture
def app(backend):
    return create_app(backend=backend)


@pytest_asyncio.fixture
async def client(app):
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as http:
        yield http
