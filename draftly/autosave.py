"""
Autosave for the blog editor.

Edits are coalesced by a :class:`DebouncedCommit`, written to a
:class:`LocalSnapshotStore` first and then upserted through a
:class:`~draftly.client.RemoteDraftClient`.  :class:`DraftReconciler` owns
the id of the server-side draft, so one editing session never creates more
than one record, and replays the local snapshot when the
:class:`ConnectivityMonitor` reports that the network is back.

Nothing here retries on its own: a failed remote save is retried by the
next edit or the next offline → online transition.
"""

from __future__ import annotations

import enum
import json
import logging
import os
import tempfile
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

import click
import requests

from draftly import DEFAULT_CATEGORY
from draftly.client import DEFAULT_URL, DraftRecord, PostRecord, RemoteDraftClient
from draftly.errors import (
    DraftError,
    NetworkFailure,
    NotFound,
    StorageFailure,
    Unauthorized,
    ValidationError,
)

log = logging.getLogger(__name__)

QUIET_PERIOD = float(os.environ.get("DRAFTLY_QUIET_PERIOD", "10"))
SNAPSHOT_PATH = Path(
    os.environ.get("DRAFTLY_SNAPSHOT_PATH")
    or Path.home() / ".draftly" / "blog-draft.json"
)

TITLE_MIN = 3
TITLE_MAX = 100
CONTENT_MIN = 10


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


################################################################################
# Local snapshot store
################################################################################
class LocalSnapshotStore:
    """
    One JSON file holding the single draft in flight on this machine.

    Reads and writes never raise: a broken file reads as "no snapshot" and a
    failed write is logged, so the editor keeps working either way.
    """

    def __init__(self, path: Path | str = SNAPSHOT_PATH, *, clock=utc_now):
        self.path = Path(path)
        self.clock = clock

    def save(self, snapshot: dict) -> bool:
        data = {
            **snapshot,
            "lastModified": self.clock().isoformat(),
            "isDraft": True,
        }
        try:
            self._write(data)
        except StorageFailure:
            log.warning("could not save local draft to %s", self.path, exc_info=True)
            return False
        return True

    def load(self) -> dict | None:
        try:
            return self._read()
        except StorageFailure as exc:
            log.warning("ignoring local draft %s: %s", self.path, exc)
            return None

    def _write(self, data: dict) -> None:
        tmp = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(
                dir=self.path.parent, prefix=".blog-draft-", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, ensure_ascii=False)
            os.replace(tmp, self.path)
        except (OSError, TypeError, ValueError) as exc:
            if tmp is not None:
                Path(tmp).unlink(missing_ok=True)
            raise StorageFailure(str(exc)) from exc

    def _read(self) -> dict | None:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageFailure(f"unreadable ({exc})") from exc
        try:
            data = json.loads(raw)
        except ValueError as exc:
            raise StorageFailure("corrupt JSON") from exc
        if not isinstance(data, dict):
            raise StorageFailure("not a JSON object")
        return data

    def clear(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError:
            log.warning("could not remove local draft %s", self.path, exc_info=True)


################################################################################
# Debounced commit scheduler
################################################################################
class DebouncedCommit:
    """
    Trailing-edge debounce around *callback*.

    Each :meth:`schedule` restarts the quiet period; only the last call of a
    burst fires.  The callback takes no arguments: it reads whatever state is
    current when it runs.
    """

    def __init__(
        self,
        callback: Callable[[], None],
        quiet_period: float = QUIET_PERIOD,
        *,
        timer_factory=threading.Timer,
    ):
        self._callback = callback
        self.quiet_period = quiet_period
        self._timer_factory = timer_factory
        self._timer = None
        self._generation = 0
        self._lock = threading.Lock()

    @property
    def pending(self) -> bool:
        return self._timer is not None

    def schedule(self) -> None:
        with self._lock:
            self._cancel_locked()
            timer = self._timer_factory(
                self.quiet_period, self._fire, args=(self._generation,)
            )
            timer.daemon = True
            self._timer = timer
        timer.start()

    def cancel(self) -> None:
        with self._lock:
            self._cancel_locked()

    def fire_now(self) -> None:
        with self._lock:
            self._cancel_locked()
        self._callback()

    def _cancel_locked(self) -> None:
        # bumping the generation turns a timer that already started firing
        # into a no-op
        self._generation += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _fire(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                return
            self._timer = None
        self._callback()


################################################################################
# Connectivity monitor
################################################################################
class ConnectivityMonitor:
    """Online/offline flag that notifies subscribers on every transition."""

    def __init__(self, online: bool = True):
        self._online = online
        self._listeners: list[Callable[[bool], None]] = []
        self._lock = threading.Lock()

    @property
    def online(self) -> bool:
        return self._online

    def subscribe(self, listener: Callable[[bool], None]) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def set_online(self, online: bool) -> bool:
        """Record the state; returns True (and notifies) only on a change."""
        with self._lock:
            if online == self._online:
                return False
            self._online = online
            listeners = list(self._listeners)
        log.info("connectivity changed: %s", "online" if online else "offline")
        for listener in listeners:
            listener(online)
        return True

    def probe(self, url: str, *, session=None, timeout: float = 3.0) -> bool:
        """HEAD *url* (the blog's ``/healthz``) and record whether it answered."""
        http = session if session is not None else requests
        try:
            up = http.head(url, timeout=timeout).status_code < 500
        except requests.RequestException:
            up = False
        self.set_online(up)
        return up


################################################################################
# Edit session
################################################################################
class CommitState(enum.Enum):
    IDLE = "idle"
    PENDING_COMMIT = "pending"
    COMMITTING = "committing"
    COMMITTED = "committed"


class SaveStatus(enum.Enum):
    IDLE = "idle"
    SAVING = "saving"
    SAVED = "saved"
    SAVED_LOCALLY = "offline, saved locally"
    UNAUTHORIZED = "not logged in"
    CANNOT_EDIT = "cannot edit"
    ERROR = "error"


@dataclass(frozen=True)
class DraftFields:
    title: str = ""
    content: str = ""
    category: str = ""

    def is_blank(self) -> bool:
        return not self.title.strip() and not self.content.strip()


@dataclass
class EditSession:
    title: str = ""
    content: str = ""
    category: str = ""
    server_draft_id: str | None = None
    editing_existing_id: str | None = None
    last_committed: DraftFields = field(default_factory=DraftFields)
    # written into the snapshot so a reconnect can tell whose draft it holds
    key: str = field(default_factory=lambda: uuid.uuid4().hex, compare=False)

    @property
    def identity(self) -> str | None:
        """Record the next commit addresses: autosaved draft, then edit target."""
        return self.server_draft_id or self.editing_existing_id

    def values(self) -> DraftFields:
        return DraftFields(self.title, self.content, self.category)

    @property
    def dirty(self) -> bool:
        return self.values() != self.last_committed

    def snapshot(self) -> dict:
        return {
            "title": self.title,
            "content": self.content,
            "category": self.category,
            "editingId": self.editing_existing_id,
            "draftId": self.server_draft_id,
            "sessionKey": self.key,
        }


def check_publishable(values: DraftFields) -> None:
    """Raise ValidationError unless *values* may be published as-is."""
    title = values.title.strip()
    content = values.content.strip()
    if not title:
        raise ValidationError("Please enter a title.")
    if len(title) < TITLE_MIN:
        raise ValidationError(f"The title needs at least {TITLE_MIN} characters.")
    if len(title) > TITLE_MAX:
        raise ValidationError(f"The title cannot exceed {TITLE_MAX} characters.")
    if not content:
        raise ValidationError("Please enter some content.")
    if len(content) < CONTENT_MIN:
        raise ValidationError(f"The content needs at least {CONTENT_MIN} characters.")
    if not values.category:
        raise ValidationError("Please choose a category.")


################################################################################
# Reconciliation
################################################################################
class DraftReconciler:
    """
    Turns editor keystrokes into at most one server-side draft per session.

    Local snapshot first, remote upsert second; remote failures during
    autosave are logged and the snapshot stays the record of truth.
    Explicit :meth:`publish` / :meth:`save_draft` raise instead.
    """

    def __init__(
        self,
        client: RemoteDraftClient,
        *,
        store: LocalSnapshotStore | None = None,
        monitor: ConnectivityMonitor | None = None,
        session_provider: Callable[[], str | None] | None = None,
        quiet_period: float = QUIET_PERIOD,
        timer_factory=threading.Timer,
        on_status: Callable[[SaveStatus], None] | None = None,
    ):
        self.client = client
        self.store = store if store is not None else LocalSnapshotStore()
        self.monitor = monitor if monitor is not None else ConnectivityMonitor()
        self.session_provider = session_provider or client.current_user_id
        self.scheduler = DebouncedCommit(
            self._on_fire, quiet_period, timer_factory=timer_factory
        )
        self.on_status = on_status
        self.session = EditSession()
        self.state = CommitState.IDLE
        self.status = SaveStatus.IDLE
        self.last_saved: datetime | None = None
        self.last_error: DraftError | None = None

        self._lock = threading.RLock()  # guards session + state
        self._remote = threading.RLock()  # one remote call at a time
        self._edited_while_committing = False
        self._cannot_edit = False
        self._unsubscribe = self.monitor.subscribe(self._on_connectivity)

    # ------------------------------------------------------------------ #
    # editor surface
    # ------------------------------------------------------------------ #
    def edit(
        self,
        *,
        title: str | None = None,
        content: str | None = None,
        category: str | None = None,
    ) -> None:
        with self._lock:
            s = self.session
            if title is not None:
                s.title = title
            if content is not None:
                s.content = content
            if category is not None:
                s.category = category

            if self.state is CommitState.COMMITTING:
                self._edited_while_committing = True
                return
            if s.dirty:
                self.state = CommitState.PENDING_COMMIT
                self.scheduler.schedule()
            else:
                self.state = CommitState.IDLE
                self.scheduler.cancel()

    def flush(self) -> None:
        """Run the pending autosave now instead of after the quiet period."""
        self.scheduler.fire_now()

    def load_for_edit(self, blog_id: str) -> PostRecord:
        """Open an existing post of the current user for editing."""
        uid = self.session_provider()
        if uid is None:
            raise Unauthorized("Log in to edit your blogs.")
        record = self.client.get_blog(blog_id)
        if record.user_id != uid:
            raise NotFound("You cannot edit this blog.")

        self.scheduler.cancel()
        with self._lock:
            self.session = EditSession(
                title=record.title,
                content=record.content,
                category=record.category,
                editing_existing_id=record.id,
            )
            self.session.last_committed = self.session.values()
            self.state = CommitState.IDLE
            self._cannot_edit = False
        return record

    def restore(self) -> dict | None:
        """
        Re-open the draft left in the local snapshot (after a crash or
        restart) and push it right away when online.
        """
        snap = self.store.load()
        if not snap:
            return None
        self.scheduler.cancel()
        with self._lock:
            self.session = EditSession(
                title=str(snap.get("title") or ""),
                content=str(snap.get("content") or ""),
                category=str(snap.get("category") or ""),
                server_draft_id=snap.get("draftId") or None,
                editing_existing_id=snap.get("editingId") or None,
            )
            self.session.last_committed = self.session.values()
            self.state = CommitState.IDLE
            if snap.get("sessionKey"):
                self.session.key = snap["sessionKey"]
            else:
                # claim the snapshot for this session before anything syncs it
                self.store.save(self.session.snapshot())
        if self.monitor.online:
            self.reconcile()
        return snap

    def publish(self, *, is_private: bool = False) -> PostRecord:
        return self._submit(as_draft=False, is_private=is_private)

    def save_draft(self) -> PostRecord:
        return self._submit(as_draft=True)

    def close(self) -> None:
        self.scheduler.cancel()
        self._unsubscribe()

    # ------------------------------------------------------------------ #
    # autosave path
    # ------------------------------------------------------------------ #
    def _on_fire(self) -> None:
        with self._remote:
            with self._lock:
                values = self.session.values()
                if values == self.session.last_committed or values.is_blank():
                    if self.state is CommitState.PENDING_COMMIT:
                        self.state = CommitState.IDLE
                    return
                self.state = CommitState.COMMITTING
                self._edited_while_committing = False
                snapshot = self.session.snapshot()
            try:
                self._commit(values, snapshot)
            finally:
                self._settle()

    def _commit(self, values: DraftFields, snapshot: dict) -> None:
        self.store.save(snapshot)

        if not self.monitor.online:
            with self._lock:
                self.session.last_committed = values
                self.state = CommitState.COMMITTED
            self.last_saved = utc_now()
            self._set_status(SaveStatus.SAVED_LOCALLY)
            return

        if self._cannot_edit:
            self._fail(
                SaveStatus.CANNOT_EDIT, NotFound("You cannot edit this blog.")
            )
            return
        if self.session_provider() is None:
            log.info("autosave kept local only: nobody is logged in")
            self._fail(SaveStatus.UNAUTHORIZED, Unauthorized("Not logged in."))
            return

        with self._lock:
            target = self.session.identity
        self._set_status(SaveStatus.SAVING)
        try:
            record = self.client.upsert_draft(
                target, values.title, values.content, values.category
            )
        except Unauthorized as exc:
            log.warning("autosave rejected: session expired", exc_info=True)
            self._fail(SaveStatus.UNAUTHORIZED, exc)
            return
        except NotFound as exc:
            log.warning("autosave target %s is gone; stop syncing", target)
            self._cannot_edit = True
            self._fail(SaveStatus.CANNOT_EDIT, exc)
            return
        except DraftError as exc:
            log.warning("autosave failed; draft kept locally", exc_info=True)
            self._fail(SaveStatus.SAVED_LOCALLY, exc)
            return

        with self._lock:
            s = self.session
            if target is None and s.identity is None:
                s.server_draft_id = record.id
            s.last_committed = values
            self.state = CommitState.COMMITTED
            self.last_error = None
        self.store.clear()
        self.last_saved = utc_now()
        self._set_status(SaveStatus.SAVED)

    def _fail(self, status: SaveStatus, error: DraftError) -> None:
        with self._lock:
            # a failed commit folds straight back to idle; the next edit or
            # reconnect retries
            self.last_error = error
            self.state = CommitState.IDLE
        self._set_status(status)

    def _settle(self) -> None:
        """Re-arm the debounce for edits that arrived during a commit."""
        with self._lock:
            if self.state is CommitState.COMMITTING:
                self.state = CommitState.IDLE
            if self._edited_while_committing:
                self._schedule_if_dirty()
            self._edited_while_committing = False

    def _schedule_if_dirty(self) -> None:
        with self._lock:
            if self.session.dirty and self.state is not CommitState.COMMITTING:
                self.state = CommitState.PENDING_COMMIT
                self.scheduler.schedule()

    # ------------------------------------------------------------------ #
    # reconnect path
    # ------------------------------------------------------------------ #
    def _on_connectivity(self, online: bool) -> None:
        if online:
            self.reconcile()

    def reconcile(self) -> DraftRecord | None:
        """
        Push the local snapshot once.  Success clears it; any failure leaves
        it in place for the next reconnect or edit.

        Only a snapshot written by the live session may hand its record id to
        that session; a leftover from an earlier one is synced on its own.
        """
        with self._remote:
            # an autosave that was in flight may have synced and cleared
            # the snapshot while we waited
            snap = self.store.load()
            if not snap:
                return None
            fields = DraftFields(
                str(snap.get("title") or ""),
                str(snap.get("content") or ""),
                str(snap.get("category") or ""),
            )
            if fields.is_blank():
                self.store.clear()
                return None
            if self.session_provider() is None:
                log.info("local draft not synced: nobody is logged in")
                self._set_status(SaveStatus.UNAUTHORIZED)
                return None

            with self._lock:
                s = self.session
                ours = snap.get("sessionKey") == s.key
                if ours:
                    target = s.identity
                else:
                    target = snap.get("draftId") or snap.get("editingId") or None
            try:
                record = self.client.upsert_draft(
                    target, fields.title, fields.content, fields.category
                )
            except DraftError:
                log.warning("could not sync local draft; keeping it", exc_info=True)
                return None

            self.store.clear()
            with self._lock:
                if ours and s is self.session:
                    if target is None and s.identity is None:
                        s.server_draft_id = record.id
                    if s.identity == record.id and s.values() == fields:
                        s.last_committed = fields
                    self.last_error = None
        self.last_saved = utc_now()
        self._set_status(SaveStatus.SAVED)
        log.info("local draft synced as %s", record.id)
        return record

    # ------------------------------------------------------------------ #
    # explicit save / publish
    # ------------------------------------------------------------------ #
    def _submit(self, *, as_draft: bool, is_private: bool = False) -> PostRecord:
        # a pending autosave must not race this call into a second record
        self.scheduler.cancel()
        with self._lock:
            if self.state is CommitState.PENDING_COMMIT:
                self.state = CommitState.IDLE
            values = self.session.values()
        if not as_draft:
            try:
                check_publishable(values)
            except ValidationError:
                # the user keeps typing; autosave picks the edits back up
                self._schedule_if_dirty()
                raise

        if not self.monitor.online:
            with self._lock:
                snapshot = self.session.snapshot()
            self.store.save(snapshot)
            self._set_status(SaveStatus.SAVED_LOCALLY)
            raise NetworkFailure(
                "Offline – saved locally; it will sync to your drafts when the"
                " connection returns."
            )
        if self._cannot_edit:
            raise NotFound("You cannot edit this blog.")
        if self.session_provider() is None:
            self._set_status(SaveStatus.UNAUTHORIZED)
            raise Unauthorized("Log in to save or publish.")

        with self._remote:
            with self._lock:
                # read after waiting: an in-flight autosave may just have
                # assigned the draft id
                target = self.session.identity
                self.state = CommitState.COMMITTING
                self._edited_while_committing = False
                snapshot = self.session.snapshot()
            self._set_status(SaveStatus.SAVING)
            try:
                record = self.client.save(
                    target,
                    values.title,
                    values.content,
                    values.category or DEFAULT_CATEGORY,
                    status="draft" if as_draft else "published",
                    is_private=False if as_draft else is_private,
                )
            except NotFound as exc:
                self._cannot_edit = True
                self._fail(SaveStatus.CANNOT_EDIT, exc)
                self._settle()
                raise
            except Unauthorized as exc:
                self._fail(SaveStatus.UNAUTHORIZED, exc)
                self._settle()
                raise
            except NetworkFailure as exc:
                self.store.save(snapshot)
                self._fail(SaveStatus.ERROR, exc)
                self._settle()
                raise
            except DraftError as exc:
                self._fail(SaveStatus.ERROR, exc)
                self._settle()
                raise

            self.store.clear()
            with self._lock:
                self.session = EditSession()
                self.state = CommitState.COMMITTED
                self.last_error = None
                self._edited_while_committing = False
        self.last_saved = utc_now()
        self._set_status(SaveStatus.SAVED)
        log.info(
            "%s blog %s", "saved draft" if as_draft else "published", record.id
        )
        return record

    def _set_status(self, status: SaveStatus) -> None:
        self.status = status
        if self.on_status is not None:
            self.on_status(status)


################################################################################
# CLI
################################################################################
@click.command()
@click.option("--url", envvar="DRAFTLY_URL", default=DEFAULT_URL, show_default=True)
@click.option("--email", envvar="DRAFTLY_EMAIL", prompt=True)
@click.option("--password", envvar="DRAFTLY_PASSWORD", prompt=True, hide_input=True)
@click.option(
    "--snapshot",
    "snapshot_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=SNAPSHOT_PATH,
    show_default=True,
    help="Local draft file written by the editor.",
)
def main(url: str, email: str, password: str, snapshot_path: Path):
    """Push the locally saved draft to the blog once, then forget it."""
    store = LocalSnapshotStore(snapshot_path)
    if store.load() is None:
        click.echo("No local draft to sync.")
        return

    client = RemoteDraftClient(url)
    try:
        client.login(email, password)
    except DraftError as exc:
        raise click.ClickException(str(exc)) from None

    reconciler = DraftReconciler(
        client, store=store, monitor=ConnectivityMonitor(online=True)
    )
    try:
        record = reconciler.reconcile()
    finally:
        reconciler.close()

    if record is not None:
        click.secho(f"✅  Draft synced as {record.id}", fg="green")
    elif store.load() is None:
        click.echo("Local draft was empty – discarded.")
    else:
        raise click.ClickException("Sync failed – the local draft was kept.")


if __name__ == "__main__":
    main()
