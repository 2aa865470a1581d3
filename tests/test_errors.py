"""
tests/test_errors.py
"""
from __future__ import annotations

from draftly.blog import app


def test_404_custom_page(client):
    """
    Any unknown URL yields the themed “Page not found” template.
    """
    resp = client.get("/this/route/does/not/exist")
    assert resp.status_code == 404
    # sanity-check that we really rendered *our* template, not Werkzeug’s
    assert b"Page not found" in resp.data
    # site title appears in the header
    assert b"draftly" in resp.data


def test_api_errors_are_json(client):
    resp = client.get("/api/nothing-here")
    assert resp.status_code == 404
    assert resp.is_json and "error" in resp.get_json()

    resp = client.patch("/api/blogs", json={})
    assert resp.status_code == 405
    assert resp.is_json


def test_unauthenticated_write_is_401_json(client):
    resp = client.post("/api/blogs", json={"title": "x"})
    assert resp.status_code == 401
    assert resp.get_json() == {"error": "Unauthorized"}


def test_500_handler_renders_friendly_page(client, monkeypatch):
    """
    Temporarily replace ``index`` with a view that crashes, but disable
    exception propagation so the global 500-handler can render the page.
    """
    def _boom():
        raise RuntimeError("kaboom!")

    # ➊ monkey-patch the failing view
    monkeypatch.setitem(app.view_functions, "index", _boom)

    # ➋ turn *off* propagation just for this test
    monkeypatch.setitem(app.config, "PROPAGATE_EXCEPTIONS", False)

    resp = client.get("/")                 # handled by our 500-handler
    assert resp.status_code == 500
    assert b"Internal Server Error" in resp.data


def test_500_handler_json_for_api(client, monkeypatch):
    def _boom():
        raise RuntimeError("kaboom!")

    monkeypatch.setitem(app.view_functions, "categories", _boom)
    monkeypatch.setitem(app.config, "PROPAGATE_EXCEPTIONS", False)

    resp = client.get("/api/categories")
    assert resp.status_code == 500
    assert resp.get_json() == {"error": "Internal Server Error"}
