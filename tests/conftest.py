import asyncio
import inspect
import os
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest  # noqa: E402
from redis import exceptions as redis_exceptions  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


START_MS = 1_700_000_000_000


class FakeClock:
    """Millisecond clock the tests move by hand."""

    def __init__(self, start_ms: int = START_MS) -> None:
        self.now_ms = start_ms

    def __call__(self) -> int:
        return self.now_ms

    def seconds(self) -> float:
        return self.now_ms / 1000

    def advance(self, seconds: float) -> None:
        self.now_ms += int(seconds * 1000)


class FakeHttpContext:
    """HttpContext backed by a shared cookie jar, like a browser across requests."""

    def __init__(self, jar: Optional[Dict[str, str]] = None) -> None:
        self.jar = jar if jar is not None else {}
        self.request_cookies = dict(self.jar)
        self.set_cookies: List[tuple] = []
        self.cleared_cookies: List[str] = []
        self.auth: Any = None
        self.response_status = 200
        self.response_body: Any = None

    def get_cookie(self, name):
        return self.request_cookies.get(name)

    def set_cookie(self, name, value, options, max_age_seconds=None):
        self.jar[name] = value
        self.set_cookies.append((name, value, max_age_seconds))

    def clear_cookie(self, name, options):
        self.jar.pop(name, None)
        self.cleared_cookies.append(name)

    def set_auth(self, value):
        self.auth = value

    def get_auth(self):
        return self.auth

    def status(self, code):
        self.response_status = code

    def json(self, body):
        self.response_body = body


class _CompareAndDeleteScript:
    """Stands in for the registered lock release Lua script."""

    def __init__(self, client: "FakeRedis", script: str) -> None:
        self.client = client
        self.script = script

    async def __call__(self, keys=None, args=None, client=None):
        self.client._maybe_fail("script")
        key, token = keys[0], args[0]
        self.client._purge(key)
        if self.client.data.get(key) == token:
            del self.client.data[key]
            self.client.expiry.pop(key, None)
            self.client._bump(key)
            return 1
        return 0


class _FakePipeline:
    """WATCH/MULTI/EXEC over FakeRedis: EXEC fails if a watched key was written."""

    def __init__(self, client: "FakeRedis") -> None:
        self.client = client
        self.watched: Dict[str, int] = {}
        self.queued: List[tuple] = []

    async def __aenter__(self) -> "_FakePipeline":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.reset()

    async def reset(self) -> None:
        self.watched.clear()
        self.queued.clear()

    async def watch(self, *keys) -> None:
        self.client._maybe_fail("watch")
        for key in keys:
            self.watched[key] = self.client.versions.get(key, 0)

    async def get(self, key):
        return await self.client.get(key)

    def multi(self) -> None:
        self.queued.clear()

    def set(self, key, value, ex=None, nx=False, xx=False) -> "_FakePipeline":
        self.queued.append((key, value, ex, nx, xx))
        return self

    async def execute(self) -> list:
        self.client._maybe_fail("exec")
        if self.client.before_exec:
            await self.client.before_exec.pop(0)()
        for key, version in self.watched.items():
            if self.client.versions.get(key, 0) != version:
                raise redis_exceptions.WatchError("Watched variable changed.")
        return [
            await self.client.set(key, value, ex=ex, nx=nx, xx=xx)
            for key, value, ex, nx, xx in self.queued
        ]


class FakeRedis:
    """The slice of ``redis.asyncio.Redis`` used by the stores and lock provider."""

    def __init__(self, clock=None) -> None:
        self._clock = clock or time.monotonic
        self.data: Dict[str, str] = {}
        self.expiry: Dict[str, float] = {}
        self.set_calls: List[dict] = []
        # Bumped on every write; WATCH compares against it
        self.versions: Dict[str, int] = {}
        # Coroutines run just before the next EXEC, one per EXEC
        self.before_exec: List[Any] = []
        self.fail_on: Dict[str, BaseException] = {}
        self.closed = False

    def _maybe_fail(self, op: str) -> None:
        error = self.fail_on.get(op)
        if error is not None:
            raise error

    def _bump(self, key: str) -> None:
        self.versions[key] = self.versions.get(key, 0) + 1

    def _purge(self, key: str) -> None:
        deadline = self.expiry.get(key)
        if deadline is not None and self._clock() >= deadline:
            self.data.pop(key, None)
            self.expiry.pop(key, None)

    async def get(self, key):
        self._maybe_fail("get")
        self._purge(key)
        return self.data.get(key)

    async def set(self, key, value, ex=None, nx=False, xx=False):
        self._maybe_fail("set")
        self._purge(key)
        self.set_calls.append({"key": key, "value": value, "ex": ex, "nx": nx, "xx": xx})
        if nx and key in self.data:
            return None
        if xx and key not in self.data:
            return None
        self.data[key] = value
        self._bump(key)
        if ex is not None:
            self.expiry[key] = self._clock() + ex
        else:
            self.expiry.pop(key, None)
        return True

    async def delete(self, *keys):
        self._maybe_fail("delete")
        removed = 0
        for key in keys:
            self._purge(key)
            if key in self.data:
                del self.data[key]
                self.expiry.pop(key, None)
                self._bump(key)
                removed += 1
        return removed

    def ttl_of(self, key: str) -> Optional[float]:
        deadline = self.expiry.get(key)
        return None if deadline is None else deadline - self._clock()

    def register_script(self, script):
        return _CompareAndDeleteScript(self, script)

    def pipeline(self, transaction=True, shard_hint=None):
        return _FakePipeline(self)

    async def aclose(self):
        self.closed = True


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def jar():
    return {}


@pytest.fixture
def make_ctx(jar):
    def _make(cookies: Optional[Dict[str, str]] = None) -> FakeHttpContext:
        return FakeHttpContext(cookies if cookies is not None else jar)

    return _make


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
