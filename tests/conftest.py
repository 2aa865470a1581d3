"""
tests/conftest.py
"""
from __future__ import annotations

import datetime as _dt
import itertools
from pathlib import Path
from typing import Generator
from urllib.parse import urlsplit

import pytest
import requests
from flask.testing import FlaskClient
from pytest import MonkeyPatch

from draftly.blog import app, init_db  # noqa: WPS433 (importing from a module)
from draftly.client import RemoteDraftClient


@pytest.fixture(scope="session")
def _tmp_db_path(tmp_path_factory: pytest.TempPathFactory) -> Path:
    """One temp file for the whole test session (faster than per-test)."""
    db_file = tmp_path_factory.mktemp("data") / "test.sqlite3"
    return db_file


@pytest.fixture(scope="session", autouse=True)
def _configure_app(_tmp_db_path: Path) -> None:
    """
    Configure the Flask app *once* before the first test is collected.
    """
    app.config.update(
        TESTING=True,
        DATABASE=str(_tmp_db_path),
        # rate limits get their own tests – keep them out of the way here
        BLOG_RATE_LIMIT_MAX=100_000,
        LOGIN_RATE_LIMIT_MAX=100_000,
    )
    with app.app_context():
        init_db()


@pytest.fixture
def client() -> Generator[FlaskClient, None, None]:
    """
    Gives each test an isolated application context *and* test client.

    Yields:
        `flask.testing.FlaskClient`
    """
    with app.test_client() as client:
        with app.app_context():
            yield client


@pytest.fixture(autouse=True, scope="session")
def _fast_clock():
    """
    Patch draftly.blog.utc_now for the whole test session so every call
    returns an ever-increasing timestamp – listings sort deterministically.
    """
    from draftly import blog  # import here to avoid early import

    counter = itertools.count()         # 0, 1, 2, …

    base = _dt.datetime(2099, 1, 1, tzinfo=_dt.timezone.utc)
    def _fake_now():
        return base + _dt.timedelta(seconds=next(counter))

    mp = MonkeyPatch()
    mp.setattr(blog, "utc_now", _fake_now)

    yield                               # tests run here

    mp.undo()                           # clean up at session end


# ───────────────────────── accounts ──────────────────────────────────
_emails = itertools.count(1)


def fresh_email() -> str:
    return f"writer{next(_emails)}@example.com"


def register_and_login(client: FlaskClient, *, password: str = "hunter22") -> dict:
    """Create a brand-new account and log *client* in as it."""
    email = fresh_email()
    rv = client.post(
        "/api/auth/register",
        json={"name": email.split("@")[0], "email": email, "password": password},
    )
    assert rv.status_code == 201, rv.get_json()
    rv = client.post("/api/auth/login", json={"email": email, "password": password})
    assert rv.status_code == 200, rv.get_json()
    data = rv.get_json()
    return {
        "id": data["user"]["id"],
        "email": email,
        "password": password,
        "csrf": data["csrf"],
    }


@pytest.fixture
def account(client) -> dict:
    """The test client, logged in as a fresh user."""
    return register_and_login(client)


@pytest.fixture
def make_account():
    """Factory: ``make_account(other_client)`` logs that client in as someone new."""
    return register_and_login


@pytest.fixture
def new_email():
    return fresh_email


# ───────────────────────── requests → Flask ──────────────────────────
class _Response:
    def __init__(self, resp):
        self.status_code = resp.status_code
        self.headers = resp.headers
        self._resp = resp

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self):
        data = self._resp.get_json(silent=True)
        if data is None:
            raise ValueError("response body is not JSON")
        return data


class FlaskSession:
    """
    Just enough of ``requests.Session`` to point a RemoteDraftClient at the
    Flask test client.  Flip ``down`` to simulate a dead network.
    """

    def __init__(self, client: FlaskClient):
        self.client = client
        self.down = False
        self.calls: list[tuple[str, str]] = []

    def request(self, method, url, *, json=None, params=None, headers=None, timeout=None):
        if self.down:
            raise requests.ConnectionError("network unreachable")
        path = urlsplit(url).path
        self.calls.append((method, path))
        resp = self.client.open(
            path, method=method, json=json, query_string=params, headers=headers
        )
        return _Response(resp)

    def head(self, url, timeout=None):
        return self.request("HEAD", url, timeout=timeout)


@pytest.fixture
def flask_http(client) -> FlaskSession:
    return FlaskSession(client)


@pytest.fixture
def remote(flask_http) -> RemoteDraftClient:
    """A RemoteDraftClient talking to the app, registered + logged in."""
    rc = RemoteDraftClient("http://localhost", session=flask_http)
    email = fresh_email()
    rc.register(email, "hunter22", name=email.split("@")[0])
    rc.login(email, "hunter22")
    return rc


# ───────────────────────── fake timers ───────────────────────────────
class FakeTimer:
    def __init__(self, interval, function, args=None, kwargs=None):
        self.interval = interval
        self.function = function
        self.args = args or ()
        self.kwargs = kwargs or {}
        self.daemon = False
        self.started = self.cancelled = self.fired = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.fired = True
        self.function(*self.args, **self.kwargs)


class FakeTimers:
    """Timer factory that only fires when the test says the time has passed."""

    def __init__(self):
        self.created: list[FakeTimer] = []

    def __call__(self, interval, function, args=None, kwargs=None):
        timer = FakeTimer(interval, function, args, kwargs)
        self.created.append(timer)
        return timer

    @property
    def active(self) -> list[FakeTimer]:
        return [t for t in self.created if t.started and not t.cancelled and not t.fired]

    def elapse(self) -> int:
        """Let the quiet period run out; returns how many timers fired."""
        due = self.active
        for timer in due:
            timer.fire()
        return len(due)


@pytest.fixture
def timers() -> FakeTimers:
    return FakeTimers()
