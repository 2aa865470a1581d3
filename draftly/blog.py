#!/usr/bin/env python3
"""
A small multi-user Markdown blog with a JSON API for the draft editor.
"""

import math
import os
import re
import secrets
import sqlite3
import threading
import uuid
from datetime import datetime, timezone
from functools import wraps
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from time import time

import click
import markdown
from flask import (
    Flask,
    abort,
    current_app,
    g,
    make_response,
    render_template_string,
    request,
    session,
)
from markupsafe import Markup
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix
from werkzeug.security import check_password_hash, generate_password_hash

from draftly import CATEGORIES, DEFAULT_CATEGORY

################################################################################
# Imports & constants
################################################################################

ROOT = Path(__file__).parent
DB_FILE = Path(os.environ.get("DRAFTLY_DB") or ROOT / "blog.sqlite3")

SECRET_FILE = ROOT / ".secret_key"
SECRET_KEY = os.environ.get("DRAFTLY_SECRET_KEY") or (
    SECRET_FILE.read_text().strip() if SECRET_FILE.exists() else secrets.token_hex(32)
)
if "DRAFTLY_SECRET_KEY" not in os.environ and not SECRET_FILE.exists():
    SECRET_FILE.write_text(SECRET_KEY)

SITE_NAME = os.environ.get("DRAFTLY_SITE_NAME", "draftly")
STATUSES = ("draft", "published")
MY_BLOG_FILTERS = ("public", "private", "draft")

BLOG_RATE_LIMIT_MAX = int(os.environ.get("BLOG_RATE_LIMIT_MAX", "3"))
BLOG_RATE_LIMIT_WINDOW = int(os.environ.get("BLOG_RATE_LIMIT_WINDOW", "10"))
LOGIN_RATE_LIMIT_MAX = int(os.environ.get("LOGIN_RATE_LIMIT_MAX", "5"))
LOGIN_RATE_LIMIT_WINDOW = int(os.environ.get("LOGIN_RATE_LIMIT_WINDOW", "60"))
RATE_LIMIT_SWEEP_INTERVAL = int(os.environ.get("RATE_LIMIT_SWEEP_INTERVAL", "300"))

EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
_FULLWIDTH_RE = re.compile(r"[\uFF00-\uFFFF]")

try:
    __version__ = version("draftly")
except PackageNotFoundError:
    __version__ = "0.1.0-dev"


################################################################################
# App
################################################################################
app = Flask(__name__)
app.url_map.strict_slashes = False
app.config.update(SECRET_KEY=SECRET_KEY, DATABASE=str(DB_FILE), SITE_NAME=SITE_NAME)
app.config.update(
    SESSION_COOKIE_SAMESITE="Lax",  # blocks most CSRF on simple links
    SESSION_COOKIE_HTTPONLY=True,  # mitigate XSS → cookie theft
    SESSION_COOKIE_SECURE=os.environ.get("DRAFTLY_SECURE_COOKIES", "0") == "1",
    BLOG_RATE_LIMIT_MAX=BLOG_RATE_LIMIT_MAX,
    BLOG_RATE_LIMIT_WINDOW=BLOG_RATE_LIMIT_WINDOW,
    LOGIN_RATE_LIMIT_MAX=LOGIN_RATE_LIMIT_MAX,
    LOGIN_RATE_LIMIT_WINDOW=LOGIN_RATE_LIMIT_WINDOW,
    RATE_LIMIT_SWEEP_INTERVAL=RATE_LIMIT_SWEEP_INTERVAL,
)
app.json.ensure_ascii = False
app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)

MD_EXTENSION_CONFIGS = {
    "pymdownx.highlight": {
        "guess_lang": True,
        "noclasses": True,
        "pygments_style": "nord",
    },
    "toc": {"permalink": False},
}
MD_EXTENSIONS = [
    "pymdownx.extra",
    "pymdownx.magiclink",
    "pymdownx.tilde",
    "pymdownx.superfences",
    "pymdownx.highlight",
    "pymdownx.betterem",
    "toc",
]
md = markdown.Markdown(
    extensions=MD_EXTENSIONS, extension_configs=MD_EXTENSION_CONFIGS
)
_md_lock = threading.Lock()


def render_markdown_html(text: str | None) -> Markup:
    """Convert a post body to HTML (the renderer is stateful, hence the lock)."""
    with _md_lock:
        md.reset()
        return Markup(md.convert(text or ""))


@app.template_filter("md")
def md_filter(text: str | None) -> Markup:
    return render_markdown_html(text)


@app.template_filter("ts")
def ts_filter(iso: str | None) -> str:
    """ISO-8601 → '2025-03-14 09:26'."""
    if not iso:
        return ""
    try:
        return datetime.fromisoformat(iso).strftime("%Y-%m-%d %H:%M")
    except ValueError:
        return iso


###############################################################################
# Database helpers
###############################################################################
def get_db():
    if "db" not in g:
        g.db = sqlite3.connect(app.config["DATABASE"])
        g.db.execute("PRAGMA foreign_keys = ON;")
        g.db.row_factory = sqlite3.Row
    return g.db


@app.teardown_appcontext
def close_db(error=None):
    db = g.pop("db", None)
    if db is not None:
        db.close()


def init_db():
    db = get_db()
    db.executescript(
        """
        ------------------------------------------------------------
        -- 1.  Accounts
        ------------------------------------------------------------
        CREATE TABLE IF NOT EXISTS user (
            id             TEXT PRIMARY KEY,
            name           TEXT UNIQUE,
            email          TEXT UNIQUE NOT NULL,
            password_hash  TEXT NOT NULL,
            created_at     TEXT NOT NULL,
            updated_at     TEXT NOT NULL
        );

        ------------------------------------------------------------
        -- 2.  Blogs  (drafts and published posts share one table)
        ------------------------------------------------------------
        CREATE TABLE IF NOT EXISTS blog (
            id          TEXT PRIMARY KEY,
            title       TEXT NOT NULL DEFAULT '',
            content     TEXT NOT NULL DEFAULT '',
            category    TEXT NOT NULL DEFAULT '其他',
            status      TEXT NOT NULL DEFAULT 'published'
                        CHECK (status IN ('draft', 'published')),
            is_private  INTEGER NOT NULL DEFAULT 0,
            user_id     TEXT NOT NULL,
            created_at  TEXT NOT NULL,
            updated_at  TEXT NOT NULL,
            FOREIGN KEY (user_id) REFERENCES user(id) ON DELETE CASCADE
        );
        CREATE INDEX IF NOT EXISTS idx_blog_user    ON blog(user_id);
        CREATE INDEX IF NOT EXISTS idx_blog_listing ON blog(status, is_private, created_at);
        """
    )
    db.commit()


# -------------------------------------------------------------------------
# Time + id helpers
# -------------------------------------------------------------------------
def utc_now() -> datetime:
    """Return an *aware* datetime in UTC."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


###############################################################################
# Rate limiting
###############################################################################
class RateLimitStore:
    """
    Fixed-window hit counters, one window per caller key.

    Lives in ``app.extensions`` so tests (or a multi-app process) can swap
    it out; expired windows are dropped by :meth:`sweep`.
    """

    def __init__(self):
        self._windows: dict[str, list] = {}  # key → [count, reset_at]
        self._lock = threading.Lock()
        self.last_sweep = 0.0

    def hit(self, key: str, *, now: float, window: float) -> tuple[int, float]:
        """Count one request for *key*; return (hits in window, reset time)."""
        with self._lock:
            entry = self._windows.get(key)
            if entry is None or entry[1] < now:
                entry = self._windows[key] = [0, now + window]
            entry[0] += 1
            return entry[0], entry[1]

    def sweep(self, now: float) -> int:
        """Forget every window that ended before *now*; return how many."""
        with self._lock:
            expired = [k for k, (_, reset_at) in self._windows.items() if reset_at < now]
            for k in expired:
                del self._windows[k]
            self.last_sweep = now
            return len(expired)

    def __len__(self) -> int:
        return len(self._windows)


app.extensions["draftly.rate_limits"] = RateLimitStore()


def rate_limit_store() -> RateLimitStore:
    return current_app.extensions["draftly.rate_limits"]


def client_ip() -> str:
    """Return best-effort client IP after ProxyFix."""
    return (
        request.access_route[0] if request.access_route else request.remote_addr
    ) or "unknown"


def rate_limit(scope: str, *, per_user: bool = False):
    """
    Limit a view to ``<SCOPE>_RATE_LIMIT_MAX`` hits per
    ``<SCOPE>_RATE_LIMIT_WINDOW`` seconds.

    Callers are keyed by user id when *per_user* is set and somebody is
    logged in, otherwise by IP.
    """

    def decorator(view):
        @wraps(view)
        def wrapped(*args, **kwargs):
            cfg = current_app.config
            limit = int(cfg[f"{scope.upper()}_RATE_LIMIT_MAX"])
            window = int(cfg[f"{scope.upper()}_RATE_LIMIT_WINDOW"])
            store = rate_limit_store()
            now = time()
            if now - store.last_sweep > int(cfg["RATE_LIMIT_SWEEP_INTERVAL"]):
                store.sweep(now)

            uid = current_user_id() if per_user else None
            who = f"user:{uid}" if uid else f"ip:{client_ip()}"
            count, reset_at = store.hit(f"{scope}:{who}", now=now, window=window)

            headers = {
                "RateLimit-Limit": str(limit),
                "RateLimit-Remaining": str(max(limit - count, 0)),
                "RateLimit-Reset": str(math.ceil(reset_at)),
            }
            if count > limit:
                headers["Retry-After"] = str(max(1, math.ceil(reset_at - now)))
                return (
                    {"error": "Too many requests – try again later."},
                    429,
                    headers,
                )

            resp = make_response(view(*args, **kwargs))
            resp.headers.update(headers)
            return resp

        return wrapped

    return decorator


###############################################################################
# Authentication
###############################################################################
def current_user_id() -> str | None:
    return session.get("user_id")


def login_required() -> str:
    uid = current_user_id()
    if not uid:
        abort(401, description="Unauthorized")
    return uid


def valid_email(email: str) -> bool:
    """
    Plain ASCII address with a local part; full-width characters and the
    ideographic full stop are rejected even when the regex would pass.
    """
    local = email.split("@", 1)[0].strip() if "@" in email else ""
    return bool(
        EMAIL_RE.match(email)
        and local
        and not _FULLWIDTH_RE.search(email)
        and "。" not in email
    )


def create_user(db, *, name: str | None, email: str, password: str) -> str:
    uid = new_id()
    now = utc_now().isoformat(timespec="seconds")
    db.execute(
        "INSERT INTO user (id, name, email, password_hash, created_at, updated_at)"
        " VALUES (?,?,?,?,?,?)",
        (uid, name or None, email, generate_password_hash(password), now, now),
    )
    db.commit()
    return uid


def user_json(row) -> dict:
    return {
        "id": row["id"],
        "name": row["name"],
        "email": row["email"],
        "createdAt": row["created_at"],
        "updatedAt": row["updated_at"],
    }


@app.route("/api/auth/register", methods=["POST"])
def register():
    data = request.get_json(silent=True) or {}
    name = (data.get("name") or "").strip()
    email = (data.get("email") or "").strip()
    password = data.get("password") or ""

    if not email or not valid_email(email):
        return {"error": "Please enter a valid email address."}, 400
    if not password:
        return {"error": "Password is required."}, 400

    db = get_db()
    if db.execute("SELECT 1 FROM user WHERE email=?", (email,)).fetchone():
        return {"error": "This email is already registered."}, 400
    if name and db.execute("SELECT 1 FROM user WHERE name=?", (name,)).fetchone():
        return {"error": "This username is already taken."}, 400

    uid = create_user(db, name=name, email=email, password=password)
    app.logger.info("registered user %s", uid)
    return {"message": "Registered – please log in.", "id": uid}, 201


@app.route("/api/auth/check-email", methods=["POST"])
def check_email():
    email = ((request.get_json(silent=True) or {}).get("email") or "").strip()
    if not email or not valid_email(email):
        return {"exists": False}, 400
    row = get_db().execute("SELECT 1 FROM user WHERE email=?", (email,)).fetchone()
    return {"exists": bool(row)}


@app.route("/api/auth/login", methods=["POST"])
@rate_limit("login")
def login():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip()
    password = data.get("password") or ""

    row = get_db().execute("SELECT * FROM user WHERE email=?", (email,)).fetchone()
    if row is None or not check_password_hash(row["password_hash"], password):
        return {"error": "Invalid email or password."}, 401

    session.clear()
    session.permanent = True
    session["user_id"] = row["id"]
    session["csrf"] = secrets.token_hex(16)
    return {"user": user_json(row), "csrf": session["csrf"]}


@app.route("/api/auth/logout", methods=["POST"])
def logout():
    session.clear()
    return {"message": "Logged out."}


@app.route("/api/auth/session")
def session_info():
    uid = current_user_id()
    row = uid and get_db().execute("SELECT * FROM user WHERE id=?", (uid,)).fetchone()
    return {"user": user_json(row) if row else None}


SAFE_METHODS = {"GET", "HEAD", "OPTIONS", "TRACE"}


@app.before_request
def csrf_protect():
    # ➊ read-only verbs ⇒ always allowed
    if request.method in SAFE_METHODS:
        return

    # ➋ no session yet ⇒ allow (covers login / register)
    if not current_user_id():
        return

    # ➌ for authenticated users we REQUIRE a valid token
    token = session.get("csrf", "")
    sent = request.headers.get("X-CSRFToken", "") or request.form.get("csrf", "")
    if not token or not secrets.compare_digest(token, sent):
        abort(403, description="CSRF token missing or invalid")


@app.after_request
def sec_headers(resp):
    resp.headers.update(
        {
            "X-Frame-Options": "DENY",
            "X-Content-Type-Options": "nosniff",
            "Referrer-Policy": "strict-origin-when-cross-origin",
        }
    )
    return resp


###############################################################################
# Blogs
###############################################################################
BLOG_SELECT = """
    SELECT  b.*,
            u.name  AS user_name,
            u.email AS user_email
      FROM  blog b
      JOIN  user u ON u.id = b.user_id
"""


def blog_json(row) -> dict:
    return {
        "id": row["id"],
        "title": row["title"],
        "content": row["content"],
        "category": row["category"],
        "status": row["status"],
        "isPrivate": bool(row["is_private"]),
        "userId": row["user_id"],
        "createdAt": row["created_at"],
        "updatedAt": row["updated_at"],
        "user": {
            "id": row["user_id"],
            "name": row["user_name"],
            "email": row["user_email"],
        },
    }


def fetch_blog(blog_id: str, *, db):
    return db.execute(BLOG_SELECT + " WHERE b.id = ?", (blog_id,)).fetchone()


def is_public(row) -> bool:
    return row["status"] == "published" and not row["is_private"]


def can_view(row, uid: str | None) -> bool:
    return row is not None and (is_public(row) or row["user_id"] == uid)


def _blog_fields(data: dict) -> tuple[dict, str | None]:
    """
    Pull the writable columns out of a JSON body.
    Returns (fields, error); only keys present in *data* end up in fields.
    """
    fields = {}
    for key in ("title", "content", "category"):
        if data.get(key) is not None:
            if not isinstance(data[key], str):
                return {}, f"{key} must be a string"
            fields[key] = data[key]
    if data.get("status") is not None:
        if data["status"] not in STATUSES:
            return {}, "status must be 'draft' or 'published'"
        fields["status"] = data["status"]
    if data.get("isPrivate") is not None:
        fields["is_private"] = 1 if data["isPrivate"] else 0
    return fields, None


def _publishable(fields: dict) -> bool:
    if fields.get("status") != "published":
        return True
    return all((fields.get(k) or "").strip() for k in ("title", "content", "category"))


@app.route("/api/blogs", methods=["GET"])
def list_blogs():
    db = get_db()
    uid = current_user_id()
    blog_id = request.args.get("id")
    if blog_id:
        row = fetch_blog(blog_id, db=db)
        if not can_view(row, uid):
            return {"error": "Blog not found"}, 404
        return blog_json(row)

    where = ["b.status = 'published'", "b.is_private = 0"]
    params: list = []
    if author := request.args.get("userId"):
        where.append("b.user_id = ?")
        params.append(author)
    if category := request.args.get("category"):
        where.append("b.category = ?")
        params.append(category)
    if q := (request.args.get("q") or "").strip():
        where.append("instr(lower(b.title), lower(?)) > 0")
        params.append(q)

    rows = db.execute(
        BLOG_SELECT + " WHERE " + " AND ".join(where) + " ORDER BY b.created_at DESC",
        params,
    ).fetchall()
    return [blog_json(r) for r in rows]


@app.route("/api/blogs/mine")
def my_blogs():
    uid = login_required()
    which = request.args.get("filter", "")
    sql = BLOG_SELECT + " WHERE b.user_id = ?"
    if which == "public":
        sql += " AND b.status = 'published' AND b.is_private = 0"
    elif which == "private":
        sql += " AND b.status = 'published' AND b.is_private = 1"
    elif which == "draft":
        sql += " AND b.status = 'draft'"
    elif which:
        return {"error": f"filter must be one of {', '.join(MY_BLOG_FILTERS)}"}, 400
    rows = get_db().execute(sql + " ORDER BY b.created_at DESC", (uid,)).fetchall()
    return [blog_json(r) for r in rows]


@app.route("/api/blogs/<blog_id>")
def get_blog(blog_id):
    row = fetch_blog(blog_id, db=get_db())
    if not can_view(row, current_user_id()):
        return {"error": "Blog not found"}, 404
    return blog_json(row)


@app.route("/api/blogs", methods=["POST"])
@rate_limit("blog", per_user=True)
def create_blog():
    uid = login_required()
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return {"error": "Request body must be a JSON object"}, 400

    fields, err = _blog_fields(data)
    if err:
        return {"error": err}, 400
    fields.setdefault("status", "published")
    if not _publishable(fields):
        return {"error": "Title, content and category are required"}, 400

    db = get_db()
    blog_id = new_id()
    now = utc_now().isoformat(timespec="seconds")
    db.execute(
        """
        INSERT INTO blog (id, title, content, category, status, is_private,
                          user_id, created_at, updated_at)
             VALUES (?,?,?,?,?,?,?,?,?)
        """,
        (
            blog_id,
            fields.get("title", ""),
            fields.get("content", ""),
            fields.get("category") or DEFAULT_CATEGORY,
            fields["status"],
            fields.get("is_private", 0),
            uid,
            now,
            now,
        ),
    )
    db.commit()
    app.logger.info("user %s created %s blog %s", uid, fields["status"], blog_id)
    return blog_json(fetch_blog(blog_id, db=db)), 201


@app.route("/api/blogs", methods=["PUT"])
@rate_limit("blog", per_user=True)
def update_blog():
    uid = login_required()
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return {"error": "Request body must be a JSON object"}, 400
    blog_id = data.get("id")
    if not blog_id:
        return {"error": "Blog ID is required"}, 400

    db = get_db()
    existing = db.execute(
        "SELECT * FROM blog WHERE id=? AND user_id=?", (blog_id, uid)
    ).fetchone()
    if existing is None:
        return {"error": "Blog not found or not authorized"}, 404

    fields, err = _blog_fields(data)
    if err:
        return {"error": err}, 400
    merged = {k: existing[k] for k in ("title", "content", "category", "status")}
    merged.update(fields)
    if not _publishable(merged):
        return {"error": "Title, content and category are required"}, 400

    if fields:
        fields["updated_at"] = utc_now().isoformat(timespec="seconds")
        cols = ", ".join(f"{k}=?" for k in fields)
        db.execute(f"UPDATE blog SET {cols} WHERE id=?", (*fields.values(), blog_id))
        db.commit()
    return blog_json(fetch_blog(blog_id, db=db))


@app.route("/api/blogs", methods=["DELETE"])
def delete_blog():
    uid = login_required()
    blog_id = request.args.get("id")
    if not blog_id:
        return {"error": "Blog ID is required"}, 400

    db = get_db()
    cur = db.execute("DELETE FROM blog WHERE id=? AND user_id=?", (blog_id, uid))
    db.commit()
    if cur.rowcount == 0:
        return {"error": "Blog not found or not authorized"}, 404
    app.logger.info("user %s deleted blog %s", uid, blog_id)
    return {"message": "Blog deleted successfully"}


@app.route("/api/categories")
def categories():
    rows = get_db().execute(
        """
        SELECT category, COUNT(*) AS cnt
          FROM blog
         WHERE status = 'published' AND is_private = 0
      GROUP BY category
        """
    ).fetchall()
    counts = {r["category"]: r["cnt"] for r in rows}
    names = list(CATEGORIES) + sorted(set(counts) - set(CATEGORIES))
    return [{"name": c, "count": counts.get(c, 0)} for c in names]


@app.route("/api/users/<user_id>")
def get_user(user_id):
    row = get_db().execute("SELECT * FROM user WHERE id=?", (user_id,)).fetchone()
    if row is None:
        return {"error": "User not found"}, 404
    return user_json(row)


@app.route("/healthz", methods=["GET", "HEAD"])
def healthz():
    return "ok", 200, {"Cache-Control": "no-store"}


###############################################################################
# Templates + Views
###############################################################################
def wrap(body: str) -> str:
    """Glue prolog + page-specific body + epilog."""
    return TEMPL_PROLOG + body + TEMPL_EPILOG


TEMPL_PROLOG = """
<!doctype html>
<html lang="zh">
<title>{{ title }}</title>
<meta name="viewport" content="width=device-width, initial-scale=1">
<meta charset="utf-8">
<style>
body{font-family:-apple-system,BlinkMacSystemFont,"Segoe UI",Roboto,"Noto Sans",sans-serif;max-width:42em;margin:auto;padding:13px;line-height:1.6;color:#c9c9c9;background:#222}
a{color:#fff}pre{background:#4a4a4a;padding:1em;overflow-x:auto}
.meta{color:#888;font-size:.8em}
</style>
<header><a href="{{ url_for('index') }}">{{ site_name }}</a></header>
<main>
"""

TEMPL_EPILOG = """
</main>
<footer class="meta"><hr>{{ site_name }} · v{{ version }}</footer>
</html>
"""

TEMPL_INDEX = wrap("""
<ul>
{% for b in blogs %}
  <li><a href="{{ url_for('post_detail', blog_id=b['id']) }}">{{ b['title'] }}</a>
      <span class="meta">{{ b['category'] }} · {{ b['user_name'] or 'anonymous' }}
      · {{ b['created_at'] | ts }}</span></li>
{% else %}
  <li>No posts yet.</li>
{% endfor %}
</ul>
""")

TEMPL_POST = wrap("""
<article>
  <h1>{{ b['title'] }}</h1>
  <p class="meta">{{ b['category'] }} · {{ b['user_name'] or 'anonymous' }}
     · {{ b['created_at'] | ts }}
     {% if b['status'] == 'draft' %}· draft{% endif %}
     {% if b['is_private'] %}· private{% endif %}</p>
  {{ b['content'] | md }}
</article>
""")

TEMPL_404 = wrap("""
<h2>Page not found</h2>
<p>The URL you asked for doesn’t exist.
   <a href="{{ url_for('index') }}">Back to the front page</a>.</p>
""")

TEMPL_500 = wrap("""
<h2>Internal Server Error</h2>
<p>Our fault, not yours. Please try again in a minute.</p>
""")


def _render(template: str, **ctx):
    return render_template_string(
        template,
        title=ctx.pop("title", None) or app.config["SITE_NAME"],
        site_name=app.config["SITE_NAME"],
        version=__version__,
        **ctx,
    )


@app.route("/")
def index():
    rows = get_db().execute(
        BLOG_SELECT
        + " WHERE b.status = 'published' AND b.is_private = 0"
        + " ORDER BY b.created_at DESC LIMIT 50"
    ).fetchall()
    return _render(TEMPL_INDEX, blogs=rows)


@app.route("/posts/<blog_id>")
def post_detail(blog_id):
    row = fetch_blog(blog_id, db=get_db())
    if not can_view(row, current_user_id()):
        abort(404)
    return _render(TEMPL_POST, b=row, title=row["title"] or app.config["SITE_NAME"])


###############################################################################
# Error pages
###############################################################################
def _wants_json() -> bool:
    return request.path.startswith("/api/")


def http_error(exc: HTTPException):
    """JSON for the API, themed page for a missing HTML route."""
    if _wants_json():
        return {"error": exc.description}, exc.code
    if exc.code == 404:
        return _render(TEMPL_404), 404
    return exc.get_response()


for _code in (400, 401, 403, 404, 405):
    app.register_error_handler(_code, http_error)


@app.errorhandler(500)
def internal_error(exc):
    """
    Generic 500 page for production. With debug on, Flask bypasses this
    handler and the Werkzeug debugger shows the traceback instead.
    """
    app.logger.error(
        "unhandled error on %s %s",
        request.method,
        request.path,
        exc_info=getattr(exc, "original_exception", None),
    )
    if _wants_json():
        return {"error": "Internal Server Error"}, 500
    return _render(TEMPL_500), 500


###############################################################################
# CLI
###############################################################################
@app.cli.command("init")
def cli_init():
    """Create the database tables (no-op when they already exist)."""
    init_db()
    click.secho(f"✅  Database ready at {app.config['DATABASE']}", fg="green")


@app.cli.command("create-user")
@click.option("--name", default="", help="Public display name (optional).")
@click.option("--email", prompt=True, help="Login email.")
@click.password_option(help="Login password.")
def cli_create_user(name: str, email: str, password: str):
    """Create an account without going through the HTTP API."""
    email = email.strip()
    if not valid_email(email):
        raise click.BadParameter("not a valid email address", param_hint="--email")
    init_db()
    db = get_db()
    try:
        uid = create_user(db, name=name.strip(), email=email, password=password)
    except sqlite3.IntegrityError:
        raise click.ClickException("email or name already in use") from None
    click.secho(f"\n✅  User created: {uid}", fg="green")


###############################################################################
# main
###############################################################################
if __name__ == "__main__":
    with app.app_context():
        init_db()
    app.run(debug=True)
