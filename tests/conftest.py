from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Set, Tuple

import pytest

from lfg.engine import LFGEngine
from lfg.errors import ExternalResourceError
from lfg.lfg_database import GuildSettingsStore
from lfg.models import CreateSessionRequest
from lfg.platform import Platform
from lfg.store import SessionStore

GUILD_ID = 4242
LFG_CHANNEL_ID = 777


class FakePlatform(Platform):
    """In-memory stand-in for Discord.

    Add an operation name to `fail` (or `(operation, user_id)` to `fail_users`)
    to make that call raise ExternalResourceError. Set `gate` to an
    asyncio.Event to hold voice channel creation until it is set.
    """

    def __init__(self) -> None:
        self._next_id = 1000
        self.categories: Dict[str, int] = {}
        self.channels: Dict[int, dict] = {}
        self.permissions: Dict[int, Set[int]] = {}
        self.voice: Dict[int, Set[int]] = {}
        self.messages: Dict[int, object] = {}
        self.posts: List[Tuple[int, object]] = []
        self.edits: List[Tuple[int, object]] = []
        self.sent: List[Tuple[int, str, List[int]]] = []
        self.deleted: List[int] = []
        self.disconnected: List[int] = []
        self.fail: Set[str] = set()
        self.fail_users: Set[Tuple[str, int]] = set()
        self.gate: Optional[asyncio.Event] = None

    def _new_id(self) -> int:
        self._next_id += 1
        return self._next_id

    def _check(self, operation: str, user_id: Optional[int] = None) -> None:
        if operation in self.fail or (operation, user_id) in self.fail_users:
            raise ExternalResourceError(f"{operation} failed")

    async def get_or_create_category(self, guild_id, name):
        self._check('get_or_create_category')
        if name not in self.categories:
            self.categories[name] = self._new_id()
        return self.categories[name]

    async def create_voice_channel(self, guild_id, name, category_id, owner_id, user_limit):
        if self.gate is not None:
            await self.gate.wait()
        self._check('create_voice_channel')
        channel_id = self._new_id()
        self.channels[channel_id] = {'name': name, 'category_id': category_id, 'user_limit': user_limit}
        self.permissions[channel_id] = {owner_id}
        self.voice[channel_id] = set()
        return channel_id

    async def delete_channel(self, guild_id, channel_id):
        self._check('delete_channel')
        self.channels.pop(channel_id, None)
        self.permissions.pop(channel_id, None)
        self.voice.pop(channel_id, None)
        self.deleted.append(channel_id)

    async def set_user_permission(self, guild_id, channel_id, user_id):
        self._check('set_user_permission', user_id)
        if channel_id not in self.channels:
            raise ExternalResourceError(f"Voice channel {channel_id} no longer exists")
        self.permissions[channel_id].add(user_id)

    async def remove_user_permission(self, guild_id, channel_id, user_id):
        self._check('remove_user_permission', user_id)
        self.permissions.get(channel_id, set()).discard(user_id)

    async def disconnect_user(self, guild_id, channel_id, user_id):
        self._check('disconnect_user', user_id)
        connected = self.voice.get(channel_id, set())
        if user_id not in connected:
            return False
        connected.discard(user_id)
        self.disconnected.append(user_id)
        return True

    async def voice_members(self, guild_id, channel_id):
        self._check('voice_members')
        return sorted(self.voice.get(channel_id, set()))

    async def permitted_users(self, guild_id, channel_id):
        self._check('permitted_users')
        return sorted(self.permissions.get(channel_id, set()))

    async def post_status(self, guild_id, channel_id, payload):
        self._check('post_status')
        message_id = self._new_id()
        self.messages[message_id] = payload
        self.posts.append((channel_id, payload))
        return message_id

    async def edit_status(self, guild_id, channel_id, message_id, payload):
        self._check('edit_status')
        if message_id not in self.messages:
            raise ExternalResourceError(f"Message {message_id} not found")
        self.messages[message_id] = payload
        self.edits.append((message_id, payload))

    async def send_message(self, guild_id, channel_id, content, mentions=()):
        self._check('send_message')
        self.sent.append((channel_id, content, list(mentions)))

    def status_of(self, session):
        """Payload currently shown in the session's status message."""
        return self.messages[session.status_message_id]


class ManualTimer:
    def __init__(self, delay, callback, name) -> None:
        self.delay = delay
        self.callback = callback
        self.name = name
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        if self.fired:
            return
        self.cancelled = True

    async def fire(self) -> None:
        """Run the callback as the real scheduler would, even if cancelled (simulates a lost cancel)."""
        self.fired = True
        await self.callback()


class ManualScheduler:
    """Scheduler whose timers only fire when a test says so."""

    def __init__(self) -> None:
        self.timers: List[ManualTimer] = []

    def call_later(self, delay, callback, name='timer'):
        timer = ManualTimer(delay, callback, name)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> List[ManualTimer]:
        return [timer for timer in self.timers if not timer.cancelled and not timer.fired]

    def shutdown(self) -> None:
        for timer in self.pending:
            timer.cancel()


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 3, 1, 18, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def platform() -> FakePlatform:
    return FakePlatform()


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> GuildSettingsStore:
    return GuildSettingsStore()


@pytest.fixture
def store() -> SessionStore:
    return SessionStore()


@pytest.fixture
def engine(store, settings, platform, scheduler, clock) -> LFGEngine:
    return LFGEngine(store, settings, platform, scheduler, clock=clock)


@pytest.fixture
def make_request():
    def _make(user_id=1, capacity=2, game='valorant', mode='Competitive', note=None,
              origin_channel_id=LFG_CHANNEL_ID):
        return CreateSessionRequest(
            game=game,
            mode=mode,
            capacity=capacity,
            user_id=user_id,
            guild_id=GUILD_ID,
            origin_channel_id=origin_channel_id,
            note=note,
            creator_name=f"player{user_id}",
        )
    return _make


@pytest.fixture
def create(engine, make_request):
    """Coroutine creating a session through the engine."""
    async def _create(user_id=1, capacity=2, **kwargs):
        return await engine.create_session(make_request(user_id=user_id, capacity=capacity, **kwargs))
    return _create
