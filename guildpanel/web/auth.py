"""
Discord OAuth2 client and session handling for the dashboard.
"""
import logging
import secrets
import urllib.parse
from dataclasses import asdict, dataclass
from datetime import datetime
from functools import wraps
from typing import Any, Dict, List, Optional

import requests
from flask import current_app, flash, jsonify, redirect, request, session, url_for


logger = logging.getLogger(__name__)

DISCORD_API_BASE = "https://discord.com/api/v10"
DISCORD_AUTHORIZE_URL = "https://discord.com/api/oauth2/authorize"
OAUTH_SCOPES = ("identify", "guilds")
SESSION_KEY = "dashboard"
CSRF_HEADER_NAME = "X-CSRF-Token"

MANAGE_GUILD = 0x20
ADMINISTRATOR = 0x8


class OAuthError(Exception):
    """The identity provider rejected the exchange or returned no profile."""


class DiscordOAuth:
    """Authorization-code flow against Discord, using requests."""

    def __init__(self, client_id: str, client_secret: str, redirect_uri: str, timeout: int = 15):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.timeout = timeout

    def authorize_url(self, state: str) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(OAUTH_SCOPES),
            "state": state,
        }
        return f"{DISCORD_AUTHORIZE_URL}?{urllib.parse.urlencode(params, quote_via=urllib.parse.quote)}"

    def exchange_code(self, code: str) -> Dict[str, Any]:
        data = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri,
            "scope": " ".join(OAUTH_SCOPES),
        }
        headers = {"Content-Type": "application/x-www-form-urlencoded"}
        response = requests.post(
            f"{DISCORD_API_BASE}/oauth2/token", data=data, headers=headers, timeout=self.timeout
        )
        if response.status_code != 200:
            raise OAuthError(f"token exchange failed with HTTP {response.status_code}")
        payload = response.json()
        if not payload.get("access_token"):
            raise OAuthError("token response carried no access_token")
        return payload

    def fetch_user(self, access_token: str) -> Dict[str, Any]:
        headers = {"Authorization": f"Bearer {access_token}"}
        response = requests.get(f"{DISCORD_API_BASE}/users/@me", headers=headers, timeout=self.timeout)
        if response.status_code != 200:
            raise OAuthError(f"profile fetch failed with HTTP {response.status_code}")
        return response.json()

    def fetch_guilds(self, access_token: str) -> List[Dict[str, Any]]:
        """Get the user's guilds; an empty list when Discord refuses."""
        headers = {"Authorization": f"Bearer {access_token}"}
        response = requests.get(
            f"{DISCORD_API_BASE}/users/@me/guilds",
            headers=headers,
            params={"with_counts": "true"},
            timeout=self.timeout,
        )
        if response.status_code == 200:
            return response.json()
        logger.warning("Guild list fetch failed with HTTP %s", response.status_code)
        return []


@dataclass(frozen=True)
class AuthenticatedUser:
    id: str
    username: str
    discriminator: str = "0"
    avatar: Optional[str] = None

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "AuthenticatedUser":
        return cls(
            id=str(data["id"]),
            username=data.get("username", ""),
            discriminator=str(data.get("discriminator") or "0"),
            avatar=data.get("avatar"),
        )

    @property
    def avatar_url(self) -> str:
        if self.avatar:
            ext = "gif" if self.avatar.startswith("a_") else "png"
            return f"https://cdn.discordapp.com/avatars/{self.id}/{self.avatar}.{ext}?size=128"
        fallback = int(self.id) % 5 if self.id.isdigit() else 0
        return f"https://cdn.discordapp.com/embed/avatars/{fallback}.png"


@dataclass
class DashboardSession:
    """Typed view over the cookie session. Call save() after a transition."""

    back_url: Optional[str] = None
    is_admin: bool = False
    user: Optional[AuthenticatedUser] = None
    session_id: Optional[str] = None
    oauth_state: Optional[str] = None
    csrf_token: Optional[str] = None

    @classmethod
    def load(cls) -> "DashboardSession":
        raw = session.get(SESSION_KEY) or {}
        user = raw.get("user")
        return cls(
            back_url=raw.get("back_url"),
            is_admin=bool(raw.get("is_admin")),
            user=AuthenticatedUser(**user) if user else None,
            session_id=raw.get("session_id"),
            oauth_state=raw.get("oauth_state"),
            csrf_token=raw.get("csrf_token"),
        )

    def save(self) -> None:
        session[SESSION_KEY] = asdict(self)

    @property
    def authenticated(self) -> bool:
        return self.user is not None and self.session_id is not None

    def require_login(self, requested_path: str) -> None:
        self.back_url = requested_path

    def begin_login(self, back_url: str) -> str:
        """Record where to go after login and return a fresh OAuth state value."""
        if not self.back_url:
            self.back_url = back_url
        self.oauth_state = secrets.token_urlsafe(24)
        return self.oauth_state

    def complete_login(self, user: AuthenticatedUser, session_id: str, is_admin: bool) -> Optional[str]:
        """Mark the session authenticated and hand back the pending redirect target."""
        target = self.back_url
        self.user = user
        self.session_id = session_id
        self.is_admin = is_admin
        self.back_url = None
        self.oauth_state = None
        self.csrf_token = secrets.token_urlsafe(48)
        return target

    def logout(self) -> None:
        session.clear()
        self.back_url = None
        self.is_admin = False
        self.user = None
        self.session_id = None
        self.oauth_state = None
        self.csrf_token = None


def safe_internal_path(target: Optional[str], default: str = "/dashboard") -> str:
    """Only allow same-site absolute paths as redirect targets."""
    if not target or not target.startswith("/") or target.startswith("//"):
        return default
    if "\\" in target or "\r" in target or "\n" in target:
        return default
    return target


def requested_path() -> str:
    query = request.query_string.decode("utf-8", "replace")
    return f"{request.path}?{query}" if query else request.path


def referrer_path(domain: str) -> Optional[str]:
    """Path of the Referer header when it points back at this site."""
    referrer = request.referrer
    if not referrer:
        return None
    parsed = urllib.parse.urlparse(referrer)
    if parsed.hostname != domain and parsed.netloc != domain:
        return None
    path = parsed.path or "/"
    return f"{path}?{parsed.query}" if parsed.query else path


def ensure_active_session(state: DashboardSession) -> bool:
    db = current_app.extensions["guildpanel"]["database"]
    db_record = db.get_session(state.session_id)
    if not db_record:
        return False
    expires_at = db_record.get("expires_at")
    if expires_at:
        try:
            expiry = datetime.fromisoformat(expires_at)
        except ValueError:
            db.delete_session(state.session_id)
            return False
        if expiry <= datetime.utcnow():
            db.delete_session(state.session_id)
            return False
    return True


def current_access_token() -> Optional[str]:
    state = DashboardSession.load()
    if not state.session_id:
        return None
    db_record = current_app.extensions["guildpanel"]["database"].get_session(state.session_id)
    return db_record.get("access_token") if db_record else None


def login_required(f):
    """Decorator to require login"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        state = DashboardSession.load()
        if state.authenticated and not ensure_active_session(state):
            logger.info("Dashboard session for %s expired", state.user.username)
            state.logout()
        if not state.authenticated:
            state.require_login(requested_path())
            state.save()
            return redirect(url_for("dashboard.login"))
        return f(*args, **kwargs)
    return decorated_function


def get_or_create_csrf_token() -> str:
    state = DashboardSession.load()
    if not state.csrf_token:
        state.csrf_token = secrets.token_urlsafe(48)
        state.save()
    return state.csrf_token


def validate_csrf_token_from_request() -> bool:
    expected = DashboardSession.load().csrf_token
    if not expected:
        return False
    token = request.headers.get(CSRF_HEADER_NAME)
    if not token and request.form:
        token = request.form.get("csrf_token")
    if not token:
        payload = request.get_json(silent=True)
        if isinstance(payload, dict):
            token = payload.get("csrf_token")
    return bool(token) and secrets.compare_digest(token, expected)


def csrf_failure_response():
    logger.warning("CSRF validation failed for %s %s", request.method, request.path)
    if request.is_json:
        return jsonify({"error": "Invalid CSRF token"}), 419
    flash("Security verification failed. Please try again.", "error")
    return redirect(safe_internal_path(referrer_path(request.host.split(":")[0]), url_for("dashboard.dashboard")))


def has_manage_permission(permissions: Any) -> bool:
    value = int(permissions or 0)
    return bool(value & MANAGE_GUILD or value & ADMINISTRATOR)
