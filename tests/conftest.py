import os
import socket
import sys
from pathlib import Path

import pytest


REPO_ROOT = Path(__file__).resolve().parents[1]

# Prefer repo sources over any installed package.
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))


@pytest.fixture(autouse=True)
def block_network(monkeypatch):
    if os.getenv("LIVE") == "1":
        return

    real_connect = socket.socket.connect

    def guarded_connect(sock, address):
        host = address[0] if isinstance(address, tuple) else address
        if host not in ("127.0.0.1", "localhost"):
            raise RuntimeError("Network access blocked in tests")
        return real_connect(sock, address)

    monkeypatch.setattr(socket.socket, "connect", guarded_connect)


class FakeResponse:
    def __init__(self, payload=None, status_code=200):
        self._payload = payload if payload is not None else {}
        self.status_code = status_code

    def json(self):
        return self._payload


class FakeSession:
    """Stands in for ``requests.Session``; ``handler(url, params)`` decides the reply.

    The handler may return a payload dict (200), a ``(status, payload)`` tuple,
    or an exception instance to raise.
    """

    def __init__(self, handler):
        self.handler = handler
        self.calls = []
        self.headers = {}

    def get(self, url, params=None, timeout=None):
        params = dict(params or {})
        self.calls.append((url, params))
        result = self.handler(url, params)
        if isinstance(result, Exception):
            raise result
        if isinstance(result, tuple):
            status, payload = result
            return FakeResponse(payload, status_code=status)
        return FakeResponse(result)

    def calls_to(self, url):
        return [params for called_url, params in self.calls if called_url == url]


@pytest.fixture()
def make_session():
    return FakeSession


@pytest.fixture()
def sleeps():
    return []


@pytest.fixture()
def no_sleep(sleeps):
    return sleeps.append
