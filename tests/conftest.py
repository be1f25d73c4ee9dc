"""Shared fixtures: a fake bot client, a fake OAuth provider and the Flask app."""
import itertools
import urllib.parse
from datetime import timedelta
from types import SimpleNamespace

import discord
import pytest

from guildpanel.config import DashboardConfig
from guildpanel.database import Database
from guildpanel.settings import GuildSettings
from guildpanel.web.auth import OAuthError
from guildpanel.web.dashboard import create_app


NOW = discord.utils.utcnow()
GUILD_ID = 1001
MANAGER_ID = 11
ADMIN_USERNAME = "botowner"


class FakeRole:
    def __init__(self, role_id, name, position, colour=0x99AAB5, default=False):
        self.id = role_id
        self.name = name
        self.position = position
        self.colour = discord.Colour(colour)
        self._default = default

    def is_default(self):
        return self._default


class FakeMember:
    def __init__(self, member_id, name, nick=None, bot=False, manage_guild=False,
                 joined_days_ago=10, created_days_ago=400, roles=(), status=discord.Status.online):
        self.id = member_id
        self.name = name
        self.nick = nick
        self.display_name = nick or name
        self.bot = bot
        self.status = status
        self.discriminator = "0"
        self.joined_at = NOW - timedelta(days=joined_days_ago)
        self.created_at = NOW - timedelta(days=created_days_ago)
        everyone = FakeRole(GUILD_ID, "@everyone", 0, colour=0, default=True)
        self.roles = [everyone, *roles]
        self.top_role = max(self.roles, key=lambda r: r.position)
        self.guild_permissions = SimpleNamespace(manage_guild=manage_guild)
        self.display_avatar = SimpleNamespace(url=f"https://cdn.discordapp.com/embed/avatars/{member_id % 5}.png")

    def __str__(self):
        return self.name


class FakeChannel:
    def __init__(self, channel_id, name, channel_type, position, category_id=None, topic=None):
        self.id = channel_id
        self.name = name
        self.type = channel_type
        self.position = position
        self.category_id = category_id
        self.topic = topic


class FakeGuild:
    def __init__(self, guild_id, name, members=(), channels=(), roles=()):
        self.id = guild_id
        self.name = name
        self.members = list(members)
        self.channels = list(channels)
        self.roles = list(roles)
        self.created_at = NOW - timedelta(days=1000)
        self.chunk_calls = 0
        self.left = False

    @property
    def member_count(self):
        return len(self.members)

    def get_member(self, user_id):
        return next((m for m in self.members if m.id == user_id), None)

    async def chunk(self):
        self.chunk_calls += 1
        return self.members

    async def leave(self):
        self.left = True


class FakeTree:
    def __init__(self, commands=()):
        self._commands = list(commands)

    def get_commands(self):
        return list(self._commands)


class FakeBot:
    def __init__(self, guilds, settings):
        self.guilds = list(guilds)
        self.settings = settings
        self.user = SimpleNamespace(name="GuildPanel")
        self.started_at = NOW - timedelta(seconds=90)
        self.cogs = {}
        self.loop = None
        self.tree = FakeTree([
            SimpleNamespace(name="ping", description="Check the bot's latency", extras={"category": "General"}),
            SimpleNamespace(
                name="settings",
                description="View or change this server's bot settings",
                extras={"category": "Settings"},
                commands=[
                    SimpleNamespace(name="view", description="Show the current settings"),
                    SimpleNamespace(name="set", description="Change one setting"),
                ],
            ),
        ])

    def get_guild(self, guild_id):
        return next((g for g in self.guilds if g.id == guild_id), None)

    def get_all_channels(self):
        return itertools.chain.from_iterable(g.channels for g in self.guilds)


class FakeOAuth:
    def __init__(self):
        self.user = {"id": str(MANAGER_ID), "username": "alice", "discriminator": "0", "avatar": None}
        self.guilds = []
        self.exchanged = []

    def authorize_url(self, state):
        return f"https://discord.test/oauth2/authorize?state={state}"

    def exchange_code(self, code):
        self.exchanged.append(code)
        if code == "bad":
            raise OAuthError("token exchange failed with HTTP 400")
        return {"access_token": f"token-{code}", "refresh_token": "refresh", "expires_in": 3600}

    def fetch_user(self, access_token):
        return self.user

    def fetch_guilds(self, access_token):
        return self.guilds


def build_guild():
    moderator = FakeRole(21, "Moderator", 5, colour=0x3498DB)
    member_role = FakeRole(22, "Member", 1, colour=0x2ECC71)
    members = [
        FakeMember(MANAGER_ID, "alice", nick="Alice", manage_guild=True, joined_days_ago=30, roles=[moderator]),
        FakeMember(12, "albert", joined_days_ago=20, roles=[member_role]),
        FakeMember(13, "bob", nick="Bobby", joined_days_ago=5, bot=True),
    ]
    channels = [
        FakeChannel(301, "Voice", discord.ChannelType.category, 1),
        FakeChannel(302, "Text", discord.ChannelType.category, 0),
        FakeChannel(311, "general", discord.ChannelType.text, 1, category_id=302, topic="Chat"),
        FakeChannel(312, "rules", discord.ChannelType.text, 0, category_id=302),
        FakeChannel(313, "Lounge", discord.ChannelType.voice, 0, category_id=301),
    ]
    roles = [FakeRole(GUILD_ID, "@everyone", 0, default=True), moderator, member_role]
    return FakeGuild(GUILD_ID, "Test Guild", members=members, channels=channels, roles=roles)


@pytest.fixture
def database(tmp_path):
    return Database(str(tmp_path / "guildpanel-test.db"))


@pytest.fixture
def guild():
    return build_guild()


@pytest.fixture
def bot(database, guild):
    return FakeBot([guild], GuildSettings(database))


@pytest.fixture
def config():
    return DashboardConfig(
        client_id="123",
        client_secret="secret",
        callback_url="http://localhost/callback",
        domain="localhost",
        secret_key="test-secret",
        bot_token="token",
        admins=(ADMIN_USERNAME,),
    )


@pytest.fixture
def oauth():
    return FakeOAuth()


@pytest.fixture
def app(bot, config, database, oauth):
    app = create_app(bot, config, database, oauth=oauth)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def http(app):
    return app.test_client()


def location(response):
    parsed = urllib.parse.urlparse(response.headers["Location"])
    return f"{parsed.path}?{parsed.query}" if parsed.query else parsed.path


def complete_login(http, code="good"):
    """Walk /login then /callback and return the callback response."""
    response = http.get("/login")
    state = urllib.parse.parse_qs(urllib.parse.urlparse(response.headers["Location"]).query)["state"][0]
    return http.get(f"/callback?code={code}&state={state}")


@pytest.fixture
def login(http, oauth):
    def _login(user_id=MANAGER_ID, username="alice"):
        oauth.user = {"id": str(user_id), "username": username, "discriminator": "0", "avatar": None}
        return complete_login(http)
    return _login


def csrf_token(http):
    with http.session_transaction() as sess:
        return sess["dashboard"]["csrf_token"]
