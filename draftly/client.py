"""
HTTP client for the blog API, shaped around what the draft editor needs.

Every transport or HTTP failure is translated into one of the exceptions
in :mod:`draftly.errors`, so callers never see a raw ``requests`` error.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

import requests

from draftly import DEFAULT_CATEGORY
from draftly.errors import (
    DraftError,
    NetworkFailure,
    NotFound,
    RateLimited,
    Unauthorized,
    ValidationError,
)

log = logging.getLogger(__name__)

DEFAULT_URL = os.environ.get("DRAFTLY_URL", "http://127.0.0.1:5000")
DEFAULT_TIMEOUT = float(os.environ.get("DRAFTLY_TIMEOUT", "10"))


@dataclass(frozen=True)
class DraftRecord:
    id: str


@dataclass(frozen=True)
class PostRecord:
    id: str
    title: str
    content: str
    category: str
    status: str
    is_private: bool
    user_id: str | None = None

    @classmethod
    def from_json(cls, data: dict) -> PostRecord:
        return cls(
            id=data["id"],
            title=data.get("title") or "",
            content=data.get("content") or "",
            category=data.get("category") or "",
            status=data.get("status") or "draft",
            is_private=bool(data.get("isPrivate")),
            user_id=data.get("userId"),
        )


def _error_for(resp) -> DraftError:
    """Map a non-2xx response onto the editor's error taxonomy."""
    try:
        body = resp.json()
    except ValueError:
        body = None
    message = body.get("error") if isinstance(body, dict) else None
    message = message or f"HTTP {resp.status_code}"

    code = resp.status_code
    if code == 400:
        return ValidationError(message)
    if code in (401, 403):
        return Unauthorized(message)
    if code == 404:
        return NotFound(message)
    if code == 429:
        try:
            retry_after = int(resp.headers.get("Retry-After", ""))
        except ValueError:
            retry_after = None
        return RateLimited(message, retry_after=retry_after)
    return NetworkFailure(message)


class RemoteDraftClient:
    """
    Talks to ``draftly.blog`` over HTTP.

    ``session`` may be any object with the ``requests.Session`` interface;
    the login cookie and CSRF token live on the instance.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_URL,
        *,
        session=None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.base_url = base_url.rstrip("/")
        self.http = session if session is not None else requests.Session()
        self.timeout = timeout
        self.csrf: str | None = None
        self.user: dict | None = None

    # ------------------------------------------------------------------ #
    # plumbing
    # ------------------------------------------------------------------ #
    def _request(self, method: str, path: str, *, json=None, params=None):
        headers = {"Accept": "application/json"}
        if self.csrf:
            headers["X-CSRFToken"] = self.csrf
        try:
            resp = self.http.request(
                method,
                self.base_url + path,
                json=json,
                params=params,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise NetworkFailure(f"{method} {path} failed – {exc}") from exc

        if not resp.ok:
            err = _error_for(resp)
            log.debug("%s %s → %s (%s)", method, path, resp.status_code, err)
            if isinstance(err, Unauthorized):
                self.user = None
            raise err
        try:
            return resp.json()
        except ValueError as exc:
            raise NetworkFailure(f"{method} {path} returned malformed JSON") from exc

    # ------------------------------------------------------------------ #
    # accounts
    # ------------------------------------------------------------------ #
    def register(self, email: str, password: str, *, name: str = "") -> str:
        data = self._request(
            "POST",
            "/api/auth/register",
            json={"name": name, "email": email, "password": password},
        )
        return data["id"]

    def email_exists(self, email: str) -> bool:
        return bool(
            self._request("POST", "/api/auth/check-email", json={"email": email})[
                "exists"
            ]
        )

    def login(self, email: str, password: str) -> dict:
        data = self._request(
            "POST", "/api/auth/login", json={"email": email, "password": password}
        )
        self.user = data["user"]
        self.csrf = data["csrf"]
        return self.user

    def logout(self) -> None:
        try:
            self._request("POST", "/api/auth/logout")
        finally:
            self.user = None
            self.csrf = None

    def current_user_id(self) -> str | None:
        """Session provider for the autosave engine; never hits the network."""
        return self.user["id"] if self.user else None

    # ------------------------------------------------------------------ #
    # blogs
    # ------------------------------------------------------------------ #
    def save(
        self,
        blog_id: str | None,
        title: str,
        content: str,
        category: str,
        *,
        status: str,
        is_private: bool = False,
    ) -> PostRecord:
        """Create (no *blog_id*) or update in place; returns the stored record."""
        body = {
            "title": title or "",
            "content": content or "",
            "category": category or DEFAULT_CATEGORY,
            "status": status,
            "isPrivate": is_private,
        }
        if blog_id:
            body["id"] = blog_id
            data = self._request("PUT", "/api/blogs", json=body)
        else:
            data = self._request("POST", "/api/blogs", json=body)
        if isinstance(data, list):
            data = data[0]
        return PostRecord.from_json(data)

    def upsert_draft(
        self, draft_id: str | None, title: str, content: str, category: str
    ) -> DraftRecord:
        record = self.save(draft_id, title, content, category, status="draft")
        return DraftRecord(id=record.id)

    def publish(
        self,
        blog_id: str | None,
        title: str,
        content: str,
        category: str,
        *,
        is_private: bool = False,
    ) -> PostRecord:
        return self.save(
            blog_id, title, content, category, status="published", is_private=is_private
        )

    def delete_draft(self, blog_id: str) -> None:
        self._request("DELETE", "/api/blogs", params={"id": blog_id})

    def get_blog(self, blog_id: str) -> PostRecord:
        return PostRecord.from_json(
            self._request("GET", "/api/blogs", params={"id": blog_id})
        )

    def my_blogs(self, which: str | None = None) -> list[PostRecord]:
        params = {"filter": which} if which else None
        return [
            PostRecord.from_json(b)
            for b in self._request("GET", "/api/blogs/mine", params=params)
        ]

    def list_blogs(
        self,
        *,
        category: str | None = None,
        query: str | None = None,
        user_id: str | None = None,
    ) -> list[PostRecord]:
        params = {
            k: v
            for k, v in (("category", category), ("q", query), ("userId", user_id))
            if v
        }
        return [
            PostRecord.from_json(b)
            for b in self._request("GET", "/api/blogs", params=params)
        ]
