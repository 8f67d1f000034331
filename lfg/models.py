"""
LFG Models
==========
Session record, typed events and result types used across the LFG system.
"""

import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Set

CUSTOM_ID_PREFIX = 'lfg'


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_session_id(creator_id: int, created_at: datetime) -> str:
    """<creator>-<epoch millis>-<random hex>, unique even for rapid re-creation."""
    millis = int(created_at.timestamp() * 1000)
    return f"{creator_id}-{millis}-{secrets.token_hex(3)}"


class SessionStatus(Enum):
    WAITING = 'waiting'
    CONFIRMING = 'confirming'
    ACTIVE = 'active'
    ENDED = 'ended'


class SessionEvent(Enum):
    """What happened to a session, used to pick the status message to show."""
    CREATED = 'created'
    JOINED = 'joined'
    CONFIRMING = 'confirming'
    CONFIRMED = 'confirmed'
    FINALIZED = 'finalized'
    REOPENED = 'reopened'
    TIMED_OUT = 'timed_out'
    CANCELLED = 'cancelled'
    ENDED = 'ended'
    EXPIRED = 'expired'
    EMPTY = 'empty'
    CLOSED = 'closed'


# ================================
#       SESSION
# ================================

@dataclass(eq=False)
class Session:
    id: str
    creator_id: int
    guild_id: int
    origin_channel_id: int
    game: str
    game_name: str
    mode: str
    capacity: int
    note: Optional[str] = None
    voice_channel_id: Optional[int] = None
    category_id: Optional[int] = None
    status_message_id: Optional[int] = None
    roster: List[int] = field(default_factory=list)
    confirmed: Set[int] = field(default_factory=set)
    status: SessionStatus = SessionStatus.WAITING
    created_at: datetime = field(default_factory=utcnow)
    confirmation_started_at: Optional[datetime] = None
    activated_at: Optional[datetime] = None
    voice_empty_since: Optional[datetime] = None
    # Set when a timeout leaves a full roster in Waiting
    stalled_since: Optional[datetime] = None
    # Handle of the pending confirmation deadline, owned by this record only
    confirmation_timer: Optional[object] = None

    @property
    def short_id(self) -> str:
        return self.id[-6:]

    @property
    def is_live(self) -> bool:
        return self.status is not SessionStatus.ENDED

    @property
    def is_full(self) -> bool:
        return len(self.roster) >= self.capacity

    @property
    def spots_left(self) -> int:
        return max(0, self.capacity - len(self.roster))

    def has_member(self, user_id: int) -> bool:
        return user_id in self.roster

    def may_use_voice(self, user_id: int) -> bool:
        return user_id in self.roster or user_id in self.confirmed

    def all_confirmed(self) -> bool:
        return bool(self.roster) and self.confirmed >= set(self.roster)

    def remove_member(self, user_id: int):
        if user_id in self.roster:
            self.roster.remove(user_id)
            self.stalled_since = None
        self.confirmed.discard(user_id)

    def cancel_confirmation_timer(self):
        """Cancel the pending deadline (if any) and drop the handle."""
        timer = self.confirmation_timer
        self.confirmation_timer = None
        if timer is not None:
            timer.cancel()


# ================================
#       EVENTS
# ================================

class ButtonKind(Enum):
    JOIN = 'join'
    CONFIRM = 'confirm'
    DECLINE = 'decline'
    LEAVE = 'leave'


@dataclass(frozen=True)
class ButtonPressed:
    kind: ButtonKind
    session_id: str
    user_id: int = 0

    def custom_id(self) -> str:
        return make_custom_id(self.kind, self.session_id)

    @classmethod
    def from_custom_id(cls, custom_id: str, user_id: int) -> Optional['ButtonPressed']:
        """Parse 'lfg:<kind>:<session id>'; None for anything that isn't ours."""
        if not custom_id:
            return None

        parts = custom_id.split(':', 2)
        if len(parts) != 3 or parts[0] != CUSTOM_ID_PREFIX or not parts[2]:
            return None

        try:
            kind = ButtonKind(parts[1])
        except ValueError:
            return None

        return cls(kind=kind, session_id=parts[2], user_id=user_id)


def make_custom_id(kind: ButtonKind, session_id: str) -> str:
    return f"{CUSTOM_ID_PREFIX}:{kind.value}:{session_id}"


@dataclass(frozen=True)
class CreateSessionRequest:
    game: str
    mode: str
    capacity: int
    user_id: int
    guild_id: int
    origin_channel_id: int
    note: Optional[str] = None
    creator_name: Optional[str] = None


# ================================
#       RESULTS
# ================================

class ResultKind(Enum):
    CREATED = 'created'
    JOINED = 'joined'
    ALREADY_IN = 'already_in'
    CONFIRMED = 'confirmed'
    ALREADY_CONFIRMED = 'already_confirmed'
    FINALIZED = 'finalized'
    DECLINED = 'declined'
    CANCELLED = 'cancelled'
    LEFT = 'left'
    ENDED = 'ended'


@dataclass
class ActionResult:
    kind: ResultKind
    session: Optional[Session]
    message: str


@dataclass(frozen=True)
class Outcome:
    """Result of one external side effect."""
    action: str
    target_id: int
    ok: bool
    error: Optional[str] = None


@dataclass
class SweepReport:
    confirmations_timed_out: int = 0
    sessions_expired: int = 0
    sessions_reaped: int = 0
    permissions_fixed: int = 0

    @property
    def total(self) -> int:
        return (self.confirmations_timed_out + self.sessions_expired
                + self.sessions_reaped + self.permissions_fixed)
