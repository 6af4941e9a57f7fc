"""Shared fixtures for the dispatch tests."""

from __future__ import annotations

import datetime as dt
import os
import sys
import types

import pytest

# Running ``pytest`` from a checkout should import the local package.
ROOT_DIR = os.path.abspath(os.path.dirname(__file__))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

from dispatch_bot.core.models import AvailabilityKind, Rider  # noqa: E402
from dispatch_bot.data.store import DispatchStore  # noqa: E402

FIXED_NOW = dt.datetime(2024, 1, 10, 12, 0, tzinfo=dt.UTC)
EVENT_DAY = dt.date(2024, 1, 15)  # a Monday


@pytest.fixture
def store() -> DispatchStore:
    """In-memory store whose clock is pinned to ``FIXED_NOW``."""
    return DispatchStore(path=None, clock=lambda: FIXED_NOW)


@pytest.fixture
def add_rider(store):
    """Add a rider, by default available 08:00-18:00 on ``EVENT_DAY``."""

    def _add(rider_id: str, name: str, *, available: bool = True, **fields) -> Rider:
        rider = store.add_rider(Rider(rider_id=rider_id, name=name, **fields))
        if available:
            store.add_availability(
                rider_id,
                date=EVENT_DAY,
                start_time=dt.time(8),
                end_time=dt.time(18),
                kind=AvailabilityKind.AVAILABLE,
            )
        return rider

    return _add


# ----------------------------------------------------------------------
# Minimal ``discord`` stand-ins
# ----------------------------------------------------------------------
def _utils_get(seq, **attrs):
    for item in seq:
        if all(getattr(item, k, None) == v for k, v in attrs.items()):
            return item
    return None


class StubTree:
    """Collects slash command callbacks by name."""

    def __init__(self) -> None:
        self.commands: dict[str, object] = {}
        self.synced: list[object] = []
        self.copied: list[object] = []

    def command(self, name: str, description: str = ""):
        def deco(func):
            self.commands[name] = func
            return func

        return deco

    def copy_global_to(self, *, guild) -> None:
        self.copied.append(guild)

    async def sync(self, *, guild=None) -> list:
        self.synced.append(guild)
        return []


def build_discord_stub() -> dict[str, types.ModuleType]:
    discord = types.ModuleType("discord")

    class Intents:
        message_content: bool = True

        @staticmethod
        def default() -> Intents:
            return Intents()

    class Game:
        def __init__(self, name: str) -> None:
            self.name = name

    class Choice:
        def __init__(self, name, value):
            self.name = name
            self.value = value

    def passthrough(**_kwargs):
        def deco(func):
            return func

        return deco

    discord.Intents = Intents
    discord.Game = Game
    discord.Interaction = object
    discord.Guild = object
    discord.Member = object
    discord.TextChannel = object
    discord.utils = types.SimpleNamespace(get=_utils_get)
    discord.app_commands = types.SimpleNamespace(
        Choice=Choice, describe=passthrough, choices=passthrough
    )

    ext = types.ModuleType("discord.ext")
    commands = types.ModuleType("discord.ext.commands")
    tasks = types.ModuleType("discord.ext.tasks")

    class Bot:
        def __init__(self, *args, **kwargs) -> None:
            self.guilds = []
            self.tree = StubTree()
            self.user = None
            self.closed = False

        async def setup_hook(self) -> None:
            pass

        async def change_presence(self, *_, **__) -> None:
            pass

        async def close(self) -> None:
            self.closed = True

    class DummyLoop:
        def __init__(self, func, kwargs) -> None:
            self.func = func
            self.kwargs = kwargs
            self.started = False
            self.cancelled = False

        def start(self, *args, **kwargs) -> None:
            self.started = True

        def cancel(self) -> None:
            self.cancelled = True

    def loop(**kwargs):
        def decorator(func):
            return DummyLoop(func, kwargs)

        return decorator

    commands.Bot = Bot
    tasks.loop = loop
    ext.commands = commands
    ext.tasks = tasks
    discord.ext = ext
    return {
        "discord": discord,
        "discord.ext": ext,
        "discord.ext.commands": commands,
        "discord.ext.tasks": tasks,
    }


# Modules that bind ``discord`` at import time and must be re-imported
# against the stub.
_DISCORD_BOUND = (
    "dispatch_bot.commands.utils",
    "dispatch_bot.commands.register",
    "dispatch_bot.bot",
)


@pytest.fixture
def discord_stub(monkeypatch):
    """Install the stub ``discord`` package for the duration of a test."""
    stub = build_discord_stub()
    for name, module in stub.items():
        monkeypatch.setitem(sys.modules, name, module)
    saved = {name: sys.modules.pop(name, None) for name in _DISCORD_BOUND}
    yield stub["discord"]
    for name, module in saved.items():
        sys.modules.pop(name, None)
        parent_name, _, attr = name.rpartition(".")
        parent = sys.modules.get(parent_name)
        if module is not None:
            sys.modules[name] = module
            if parent is not None:
                setattr(parent, attr, module)
        elif parent is not None and hasattr(parent, attr):
            delattr(parent, attr)


class FakeResponse:
    def __init__(self) -> None:
        self.messages: list[str] = []
        self.ephemeral: list[bool] = []
        self.deferred = False

    async def send_message(self, content: str, *, ephemeral: bool = False) -> None:
        self.messages.append(content)
        self.ephemeral.append(ephemeral)

    async def defer(self, *, ephemeral: bool = False) -> None:
        self.deferred = True


class FakeInteraction:
    def __init__(self, guild=None) -> None:
        self.response = FakeResponse()
        self.guild = guild
        self.edits: list[str] = []

    async def edit_original_response(self, *, content: str) -> None:
        self.edits.append(content)


class FakeChannel:
    def __init__(self, name: str, cid: int) -> None:
        self.name = name
        self.id = cid
        self.sent: list[str] = []

    async def send(self, content: str) -> None:
        self.sent.append(content)


class FakeGuild:
    def __init__(self, gid: int = 1) -> None:
        self.id = gid
        self.text_channels: list[FakeChannel] = []

    async def create_text_channel(self, name: str) -> FakeChannel:
        channel = FakeChannel(name, len(self.text_channels) + 1)
        self.text_channels.append(channel)
        return channel
