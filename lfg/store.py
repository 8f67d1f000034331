"""
Session Store
=============
In-memory registry of live LFG sessions. Sessions are never persisted and are
lost on restart.

Besides the primary id -> session mapping the store keeps three indices:
creator -> session, rostered user -> session and voice channel -> session.
Roster changes must go through the store so the member index stays in sync.
"""

import logging
from typing import Dict, Iterable, List, Optional

from .models import Session

logger = logging.getLogger(__name__)


class SessionStore:
    """Owned registry of sessions; one instance per running bot."""

    def __init__(self):
        self._sessions: Dict[str, Session] = {}
        self._by_creator: Dict[int, str] = {}
        self._by_member: Dict[int, str] = {}
        self._by_voice_channel: Dict[int, str] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    # ================================
    #       LOOKUPS
    # ================================

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def by_creator(self, user_id: int) -> Optional[Session]:
        session_id = self._by_creator.get(user_id)
        return self._sessions.get(session_id) if session_id else None

    def session_of_member(self, user_id: int) -> Optional[Session]:
        session_id = self._by_member.get(user_id)
        return self._sessions.get(session_id) if session_id else None

    def by_voice_channel(self, channel_id: int) -> Optional[Session]:
        session_id = self._by_voice_channel.get(channel_id)
        return self._sessions.get(session_id) if session_id else None

    def sessions(self) -> List[Session]:
        """Snapshot of all live sessions (safe to iterate while handlers mutate the store)."""
        return list(self._sessions.values())

    def voice_channel_ids(self) -> List[int]:
        return list(self._by_voice_channel.keys())

    # ================================
    #       MUTATIONS
    # ================================

    def add(self, session: Session):
        if session.id in self._sessions:
            raise ValueError(f"Session {session.id} already registered")
        if session.creator_id in self._by_creator:
            raise ValueError(f"User {session.creator_id} already owns a session")

        self._sessions[session.id] = session
        self._by_creator[session.creator_id] = session.id
        for user_id in session.roster:
            self._by_member[user_id] = session.id
        if session.voice_channel_id:
            self._by_voice_channel[session.voice_channel_id] = session.id

        logger.debug(f"Registered session {session.id} ({len(self._sessions)} live)")

    def add_member(self, session: Session, user_id: int):
        owner = self._by_member.get(user_id)
        if owner is not None and owner != session.id:
            raise ValueError(f"User {user_id} is already in session {owner}")

        if user_id not in session.roster:
            session.roster.append(user_id)
        self._by_member[user_id] = session.id

    def remove_member(self, session: Session, user_id: int):
        session.remove_member(user_id)
        if self._by_member.get(user_id) == session.id:
            del self._by_member[user_id]

    def set_roster(self, session: Session, roster: Iterable[int]) -> List[int]:
        """Replace the roster (order kept, duplicates dropped). Returns the users dropped."""
        new_roster: List[int] = []
        for user_id in roster:
            if user_id not in new_roster:
                new_roster.append(user_id)

        dropped = [user_id for user_id in session.roster if user_id not in new_roster]
        for user_id in dropped:
            self.remove_member(session, user_id)
        for user_id in new_roster:
            self.add_member(session, user_id)

        session.roster[:] = new_roster
        return dropped

    def remove(self, session: Session) -> bool:
        """Drop a session and clear every index pointing to it."""
        if self._sessions.get(session.id) is not session:
            return False

        del self._sessions[session.id]
        if self._by_creator.get(session.creator_id) == session.id:
            del self._by_creator[session.creator_id]
        for user_id in [uid for uid, sid in self._by_member.items() if sid == session.id]:
            del self._by_member[user_id]
        if session.voice_channel_id and self._by_voice_channel.get(session.voice_channel_id) == session.id:
            del self._by_voice_channel[session.voice_channel_id]

        logger.debug(f"Removed session {session.id} ({len(self._sessions)} live)")
        return True

    def clear(self):
        self._sessions.clear()
        self._by_creator.clear()
        self._by_member.clear()
        self._by_voice_channel.clear()
