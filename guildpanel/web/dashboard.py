"""
Web dashboard backend using Flask with Discord OAuth2.

The app is built by create_app() around a live bot client; handlers read the
client's caches directly and submit the few coroutines they need onto the
bot's event loop.
"""
import asyncio
import logging
import platform
import secrets
from datetime import datetime, timedelta
from functools import wraps
from typing import Any, Dict, List, Optional

import discord
import requests
from flask import (
    Blueprint,
    Flask,
    current_app,
    jsonify,
    redirect,
    render_template,
    request,
    url_for,
)
from flask_cors import CORS

from ..config import DashboardConfig
from ..database import Database
from .auth import (
    AuthenticatedUser,
    DashboardSession,
    DiscordOAuth,
    OAuthError,
    csrf_failure_response,
    current_access_token,
    get_or_create_csrf_token,
    has_manage_permission,
    login_required,
    referrer_path,
    safe_internal_path,
    validate_csrf_token_from_request,
)
from .members import InvalidMemberQuery, MemberQuery, build_member_page
from .stats import collect_bot_stats, collect_guild_stats, memory_usage_mb


logger = logging.getLogger(__name__)

bp = Blueprint("dashboard", __name__)

CSRF_EXEMPT_ENDPOINTS = {"dashboard.callback", "dashboard.login", "static"}


def get_client() -> Any:
    return current_app.extensions["guildpanel"]["client"]


def get_config() -> DashboardConfig:
    return current_app.extensions["guildpanel"]["config"]


def get_database() -> Database:
    return current_app.extensions["guildpanel"]["database"]


def get_oauth() -> DiscordOAuth:
    return current_app.extensions["guildpanel"]["oauth"]


def run_on_bot_loop(coro) -> Any:
    """Run a coroutine on the bot's event loop and block until it finishes."""
    loop = getattr(get_client(), "loop", None)
    if isinstance(loop, asyncio.AbstractEventLoop) and loop.is_running():
        return asyncio.run_coroutine_threadsafe(coro, loop).result()
    return asyncio.run(coro)


def can_manage_guild(guild: Any, state: DashboardSession) -> bool:
    if state.is_admin:
        return True
    if state.user is None:
        return False
    member = guild.get_member(int(state.user.id))
    return member is not None and member.guild_permissions.manage_guild


def guild_access_required(view):
    """Resolve <guild_id> to a guild the session may manage, or stop the request."""
    @wraps(view)
    @login_required
    def decorated_function(guild_id: int, *args, **kwargs):
        guild = get_client().get_guild(guild_id)
        if guild is None:
            return "", 404
        if not can_manage_guild(guild, DashboardSession.load()):
            return redirect(url_for("dashboard.index"))
        return view(guild, *args, **kwargs)
    return decorated_function


def admin_required(view):
    @wraps(view)
    @login_required
    def decorated_function(*args, **kwargs):
        if not DashboardSession.load().is_admin:
            return redirect(url_for("dashboard.dashboard"))
        return view(*args, **kwargs)
    return decorated_function


def render_page(template: str, **data):
    """Render with the values every page template expects."""
    state = DashboardSession.load()
    base = {
        "bot": get_client(),
        "path": request.path,
        "user": state.user,
        "is_admin": state.is_admin,
        "avatar": state.user.avatar_url if state.user else None,
        "domain": get_config().domain,
    }
    base.update(data)
    return render_template(template, **base)


def invite_url(guild_id: Optional[int] = None) -> str:
    config = get_config()
    url = (
        f"https://discord.com/oauth2/authorize?client_id={config.client_id}"
        f"&scope=bot+applications.commands&permissions={config.invite_permissions}"
    )
    if guild_id:
        url += f"&guild_id={guild_id}&disable_guild_select=true"
    return url


def build_command_groups(client: Any) -> List[dict]:
    groups: Dict[str, dict] = {}
    for command in client.tree.get_commands():
        category = (getattr(command, "extras", None) or {}).get("category", "General")
        bucket = groups.setdefault(category, {"name": category, "commands": []})
        subcommands = getattr(command, "commands", None)
        if subcommands:
            for sub in subcommands:
                bucket["commands"].append({"name": f"/{command.name} {sub.name}", "description": sub.description})
        else:
            bucket["commands"].append({"name": f"/{command.name}", "description": command.description})
    for bucket in groups.values():
        bucket["commands"].sort(key=lambda c: c["name"])
    return sorted(groups.values(), key=lambda g: g["name"])


def build_channel_tree(guild: Any) -> List[dict]:
    channels = list(guild.channels)
    categories = []
    for category in channels:
        if category.type != discord.ChannelType.category:
            continue
        children = [
            {
                "name": channel.name,
                "id": str(channel.id),
                "position": channel.position,
                "topic": getattr(channel, "topic", None),
                "type": str(channel.type),
            }
            for channel in channels
            if channel.category_id == category.id
        ]
        children.sort(key=lambda c: c["position"])
        categories.append(
            {"name": category.name, "id": str(category.id), "position": category.position, "channels": children}
        )
    categories.sort(key=lambda c: c["position"])
    return categories


def build_member_rows(guild: Any) -> List[dict]:
    rows = []
    for member in guild.members:
        top_role = member.top_role
        rows.append(
            {
                "username": member.name,
                "id": str(member.id),
                "nickname": member.nick,
                "bot": bool(member.bot),
                "joined": member.joined_at,
                "avatar": member.display_avatar.url,
                "rank": {"name": top_role.name, "color": str(top_role.colour)},
                "roles": [
                    {"name": role.name, "position": role.position, "color": str(role.colour)}
                    for role in member.roles
                    if not role.is_default()
                ],
            }
        )
    return rows


def build_module_cards(client: Any) -> List[dict]:
    cards = []
    for group in build_command_groups(client):
        cards.append({"name": group["name"], "kind": "Commands", "commands": group["commands"]})
    for name, cog in sorted(client.cogs.items()):
        cards.append(
            {
                "name": name,
                "kind": "Cog",
                "description": cog.description or "",
                "commands": [{"name": command.qualified_name, "description": command.description} for command in cog.walk_app_commands()],
            }
        )
    return cards


@bp.before_app_request
def enforce_csrf():
    if request.method in {"POST", "PUT", "PATCH", "DELETE"}:
        if request.endpoint in CSRF_EXEMPT_ENDPOINTS or request.endpoint is None:
            return None
        if not DashboardSession.load().authenticated:
            # the login gate on the view answers anonymous requests
            return None
        if not validate_csrf_token_from_request():
            return csrf_failure_response()
    return None


@bp.app_context_processor
def inject_csrf_token():
    return {"csrf_token": get_or_create_csrf_token}


# Session pages

@bp.route("/login")
def login():
    """Save where the visitor came from, then hand off to Discord"""
    state = DashboardSession.load()
    oauth_state = state.begin_login(referrer_path(get_config().domain) or "/")
    state.save()
    return redirect(get_oauth().authorize_url(oauth_state))


@bp.route("/callback")
def callback():
    """OAuth callback"""
    state = DashboardSession.load()
    code = request.args.get("code")
    returned_state = request.args.get("state")
    if request.args.get("error") or not code:
        logger.warning("OAuth callback without code: %s", request.args.get("error", "missing code"))
        return redirect(url_for("dashboard.autherror"))
    if not state.oauth_state or not returned_state or not secrets.compare_digest(returned_state, state.oauth_state):
        logger.warning("OAuth callback state mismatch")
        return redirect(url_for("dashboard.autherror"))

    oauth = get_oauth()
    try:
        token_data = oauth.exchange_code(code)
        user = AuthenticatedUser.from_payload(oauth.fetch_user(token_data["access_token"]))
    except (OAuthError, requests.RequestException) as exc:
        logger.warning("OAuth login failed: %s", exc)
        return redirect(url_for("dashboard.autherror"))

    config = get_config()
    expires_in = int(token_data.get("expires_in") or config.session_lifetime)
    session_id = secrets.token_urlsafe(32)
    expires_at = datetime.utcnow() + timedelta(seconds=expires_in)
    get_database().create_session(
        session_id,
        int(user.id),
        token_data["access_token"],
        token_data.get("refresh_token"),
        expires_at.isoformat(),
    )

    target = state.complete_login(user, session_id, config.is_admin(user.username))
    state.save()
    logger.info("%s logged into the dashboard", user.username)
    return redirect(safe_internal_path(target, url_for("dashboard.dashboard")))


@bp.route("/autherror")
def autherror():
    return render_page("autherror.html")


@bp.route("/logout")
def logout():
    """Logout"""
    state = DashboardSession.load()
    if state.session_id:
        get_database().delete_session(state.session_id)
    if state.user:
        logger.info("%s logged out of the dashboard", state.user.username)
    state.logout()
    return redirect(url_for("dashboard.index"))


# Informational pages

@bp.route("/")
def index():
    """Home page"""
    client = get_client()
    return render_page(
        "index.html",
        guild_count=len(client.guilds),
        member_count=sum(g.member_count or 0 for g in client.guilds),
    )


@bp.route("/commands")
def commands():
    return render_page("commands.html", command_groups=build_command_groups(get_client()))


@bp.route("/api")
def api():
    return render_page("api.html")


@bp.route("/stats")
def stats():
    return render_page("stats.html", stats=collect_bot_stats(get_client()))


@bp.route("/invite")
@login_required
def invite():
    return render_page("invite.html", invite_url=invite_url())


@bp.route("/dashboard")
@login_required
def dashboard():
    """Guilds the user can manage, marked with whether the bot is present"""
    client = get_client()
    access_token = current_access_token()
    try:
        user_guilds = get_oauth().fetch_guilds(access_token) if access_token else []
    except requests.RequestException as exc:
        logger.warning("Failed to fetch user guilds: %s", exc)
        user_guilds = []

    guilds = []
    for g in user_guilds:
        if not has_manage_permission(g.get("permissions")):
            continue
        guild_id = int(g["id"])
        guilds.append(
            {
                "id": str(guild_id),
                "name": g.get("name", "Unknown"),
                "icon": g.get("icon"),
                "bot_present": client.get_guild(guild_id) is not None,
                "invite_url": invite_url(guild_id),
            }
        )
    guilds.sort(key=lambda g: (not g["bot_present"], g["name"].lower()))
    return render_page("dashboard.html", guilds=guilds)


@bp.route("/botadmin")
@admin_required
def botadmin():
    client = get_client()
    return render_page(
        "botadmin.html",
        stats=collect_bot_stats(client),
        cogs=sorted(client.cogs.keys()),
        memory=memory_usage_mb(),
        python_version=platform.python_version(),
    )


@bp.route("/admin")
@admin_required
def admin():
    """Every guild the bot is in, not only the ones the user manages"""
    client = get_client()
    guilds = sorted(client.guilds, key=lambda g: g.name.lower())
    return render_page("admin.html", guilds=guilds)


# Guild management

@bp.route("/dashboard/<int:guild_id>")
@guild_access_required
def guild_home(guild):
    return redirect(url_for("dashboard.manage", guild_id=guild.id))


@bp.route("/dashboard/<int:guild_id>/manage", methods=["GET", "POST"])
@guild_access_required
def manage(guild):
    client = get_client()
    if request.method == "POST":
        submitted = request.form.to_dict()
        submitted.pop("csrf_token", None)
        client.settings.write(guild.id, submitted)
        logger.info("Settings for guild %s updated from the dashboard (%s)", guild.id, ", ".join(sorted(submitted)))
        return redirect(url_for("dashboard.manage", guild_id=guild.id))
    return render_page(
        "manage.html",
        guild=guild,
        settings=client.settings.get(guild.id),
        overrides=client.settings.overrides(guild.id),
    )


@bp.route("/dashboard/<int:guild_id>/members")
@guild_access_required
def members(guild):
    return render_page("guild_members.html", guild=guild, members=build_member_rows(guild))


@bp.route("/dashboard/<int:guild_id>/members/list")
@guild_access_required
def members_list(guild):
    """Partial member list, filtered, sorted and paged on the server"""
    try:
        query = MemberQuery.from_args(request.args)
    except InvalidMemberQuery as exc:
        return jsonify({"error": str(exc)}), 400
    if query.fetch:
        run_on_bot_loop(guild.chunk())
    return jsonify(build_member_page(guild, query).to_dict())


@bp.route("/dashboard/<int:guild_id>/c")
@guild_access_required
def channels(guild):
    return render_page("channels.html", guild=guild, cats=build_channel_tree(guild))


@bp.route("/dashboard/<int:guild_id>/stats")
@guild_access_required
def guild_stats(guild):
    return render_page("guild_stats.html", guild=guild, stats=collect_guild_stats(guild))


@bp.route("/dashboard/<int:guild_id>/modules")
@guild_access_required
def modules(guild):
    return render_page("guild_modules.html", guild=guild, modules=build_module_cards(get_client()))


@bp.route("/dashboard/<int:guild_id>/leave")
@guild_access_required
def leave(guild):
    run_on_bot_loop(guild.leave())
    logger.info("Left guild %s (%s) from the dashboard", guild.name, guild.id)
    return redirect(url_for("dashboard.dashboard"))


@bp.route("/dashboard/<int:guild_id>/reset")
@guild_access_required
def reset(guild):
    get_client().settings.delete(guild.id)
    logger.info("Settings for guild %s reset to defaults", guild.id)
    return redirect(url_for("dashboard.guild_home", guild_id=guild.id))


def create_app(client: Any, config: DashboardConfig, database: Database, oauth: Optional[DiscordOAuth] = None) -> Flask:
    app = Flask(
        __name__,
        template_folder="templates",
        static_folder="static",
        static_url_path="/assets",
    )
    app.secret_key = config.secret_key
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(seconds=config.session_lifetime)
    CORS(app)
    app.extensions["guildpanel"] = {
        "client": client,
        "config": config,
        "database": database,
        "oauth": oauth or DiscordOAuth(config.client_id, config.client_secret, config.callback_url),
    }
    app.register_blueprint(bp)
    return app


def run_dashboard(app: Flask, host: str = "0.0.0.0", port: int = 8003):
    """Run the dashboard (blocking; the bot runs it on a daemon thread)"""
    logger.info("Dashboard listening on http://%s:%s", host, port)
    app.run(host=host, port=port, debug=False, use_reloader=False, threaded=True)
