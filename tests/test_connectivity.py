"""
tests/test_connectivity.py
"""
from __future__ import annotations

import requests

from draftly.autosave import ConnectivityMonitor


class _Resp:
    def __init__(self, status_code):
        self.status_code = status_code


class _Http:
    def __init__(self, status_code=200, exc=None):
        self.status_code = status_code
        self.exc = exc
        self.urls = []

    def head(self, url, timeout=None):
        self.urls.append(url)
        if self.exc is not None:
            raise self.exc
        return _Resp(self.status_code)


def test_notifies_only_on_transitions():
    seen = []
    monitor = ConnectivityMonitor(online=True)
    monitor.subscribe(seen.append)

    assert monitor.set_online(True) is False
    assert monitor.set_online(False) is True
    assert monitor.set_online(False) is False
    assert monitor.set_online(True) is True
    assert seen == [False, True]
    assert monitor.online


def test_unsubscribe():
    seen = []
    monitor = ConnectivityMonitor()
    unsubscribe = monitor.subscribe(seen.append)
    unsubscribe()
    unsubscribe()                       # idempotent
    monitor.set_online(False)
    assert seen == []


def test_probe():
    monitor = ConnectivityMonitor(online=True)

    down = _Http(exc=requests.ConnectionError("no route to host"))
    assert monitor.probe("http://blog/healthz", session=down) is False
    assert not monitor.online
    assert down.urls == ["http://blog/healthz"]

    assert monitor.probe("http://blog/healthz", session=_Http(503)) is False
    assert monitor.probe("http://blog/healthz", session=_Http(200)) is True
    assert monitor.online

    # any answer below 500 means the server is reachable
    assert monitor.probe("http://blog/healthz", session=_Http(404)) is True


def test_probe_against_app(flask_http):
    monitor = ConnectivityMonitor(online=False)
    assert monitor.probe("http://localhost/healthz", session=flask_http) is True
    assert flask_http.calls == [("HEAD", "/healthz")]

    flask_http.down = True
    assert monitor.probe("http://localhost/healthz", session=flask_http) is False
