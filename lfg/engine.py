"""
LFG Engine
==========
Session lifecycle: waiting -> confirming -> active, or ended.

All handlers run on the single asyncio loop. Each one validates and mutates the
session synchronously before its first await, then performs the Discord side
effects. After any await the session may have moved on, so status messages are
rendered from the state at that moment, and timer/sweep callbacks re-check the
status before acting (a mismatch is a stale event and a no-op).
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional, Set

from . import games
from .config import (
    ACTIVE_IDLE_MINUTES, ACTIVE_MAX_HOURS, CATEGORY_PREFIX, CONFIRMATION_TIMEOUT_SECONDS,
    INFO_MAX_LENGTH, MAX_PLAYERS, MIN_PLAYERS, NO_JOINER_TIMEOUT_MINUTES,
)
from .errors import ConflictError, ExternalResourceError, NotFoundError, ValidationError
from .lfg_database import GuildSettingsStore
from .models import (
    ActionResult, ButtonKind, ButtonPressed, CreateSessionRequest, ResultKind, Session,
    SessionEvent, SessionStatus, SweepReport, new_session_id, utcnow,
)
from .platform import Platform
from .renderer import confirmation_ping, render_status
from .store import SessionStore
from .voice_access import VoiceAccessController

logger = logging.getLogger(__name__)

WAITING_EVENTS = (SessionEvent.CREATED, SessionEvent.JOINED, SessionEvent.REOPENED, SessionEvent.TIMED_OUT)


class LFGEngine:
    """Owns the lifecycle of every LFG session in the store."""

    def __init__(
        self,
        store: SessionStore,
        settings: GuildSettingsStore,
        platform: Platform,
        scheduler,
        voice: Optional[VoiceAccessController] = None,
        clock: Callable[[], datetime] = utcnow,
        confirmation_timeout: timedelta = timedelta(seconds=CONFIRMATION_TIMEOUT_SECONDS),
        no_joiner_timeout: timedelta = timedelta(minutes=NO_JOINER_TIMEOUT_MINUTES),
        active_idle_timeout: timedelta = timedelta(minutes=ACTIVE_IDLE_MINUTES),
        active_max_age: timedelta = timedelta(hours=ACTIVE_MAX_HOURS),
    ):
        self.store = store
        self.settings = settings
        self.platform = platform
        self.scheduler = scheduler
        self.voice = voice or VoiceAccessController(platform)
        self._now = clock

        self.confirmation_timeout_delay = confirmation_timeout
        self.no_joiner_timeout = no_joiner_timeout
        self.active_idle_timeout = active_idle_timeout
        self.active_max_age = active_max_age

        # Creators whose session is being provisioned right now
        self._creating: Set[int] = set()

        self._button_handlers = {
            ButtonKind.JOIN: self.join,
            ButtonKind.CONFIRM: self.confirm,
            ButtonKind.DECLINE: self.decline,
            ButtonKind.LEAVE: self.leave,
        }

    # ================================
    #       LOOKUPS
    # ================================

    def _live_session(self, session_id: str) -> Session:
        session = self.store.get(session_id)
        if session is None or not session.is_live:
            raise NotFoundError("This LFG session is no longer active!")
        return session

    def _check_user_free(self, user_id: int):
        if self.store.by_creator(user_id) is not None:
            raise ValidationError(
                "You already have an active LFG session! Use `/endlfg` to end it first."
            )
        if self.store.session_of_member(user_id) is not None:
            raise ValidationError(
                "You are already in another LFG session! Leave your current session first."
            )
        if user_id in self._creating:
            raise ValidationError("Your LFG session is still being created, please wait.")

    # ================================
    #       CREATE
    # ================================

    async def create_session(self, request: CreateSessionRequest) -> Session:
        """Validate, provision a voice channel, register and announce a new session."""
        game = games.validate(request.game, request.mode)

        if not MIN_PLAYERS <= request.capacity <= MAX_PLAYERS:
            raise ValidationError(f"Players must be between {MIN_PLAYERS} and {MAX_PLAYERS}.")

        note = (request.note or '').strip() or None
        if note and len(note) > INFO_MAX_LENGTH:
            raise ValidationError(f"Additional info can be at most {INFO_MAX_LENGTH} characters.")

        lfg_channel_id = self.settings.get_lfg_channel(request.guild_id)
        if lfg_channel_id and lfg_channel_id != request.origin_channel_id:
            raise ValidationError(f"LFG commands can only be used in <#{lfg_channel_id}>!")

        self._check_user_free(request.user_id)

        # Reserve the creator before awaiting provisioning
        self._creating.add(request.user_id)
        try:
            created_at = self._now()
            session = Session(
                id=new_session_id(request.user_id, created_at),
                creator_id=request.user_id,
                guild_id=request.guild_id,
                origin_channel_id=request.origin_channel_id,
                game=game.key,
                game_name=game.name,
                mode=request.mode,
                capacity=request.capacity,
                note=note,
                roster=[request.user_id],
                created_at=created_at,
            )

            try:
                session.category_id = await self.platform.get_or_create_category(
                    request.guild_id, f"{CATEGORY_PREFIX} {game.name}"
                )
            except ExternalResourceError as e:
                logger.error(f"❌ Could not get category for {game.name}, creating channel without one: {e.message}")

            creator_name = request.creator_name or str(request.user_id)
            try:
                session.voice_channel_id = await self.platform.create_voice_channel(
                    request.guild_id,
                    f"{game.name} - {creator_name}",
                    session.category_id,
                    request.user_id,
                    request.capacity,
                )
            except ExternalResourceError as e:
                logger.error(f"❌ Error creating LFG session for {request.user_id}: {e.message}")
                raise ExternalResourceError("Failed to create LFG session. Please try again.") from e

            self.store.add(session)
        finally:
            self._creating.discard(request.user_id)

        logger.info(f"✅ Created LFG session {session.id} ({game.name} {session.mode}, "
                    f"{session.capacity} players) for {session.creator_id}")

        await self.voice.grant(session, session.creator_id)
        await self._publish(session, SessionEvent.CREATED)
        return session

    # ================================
    #       PLAYER ACTIONS
    # ================================

    async def handle_button(self, event: ButtonPressed) -> ActionResult:
        handler = self._button_handlers[event.kind]
        return await handler(event.session_id, event.user_id)

    async def join(self, session_id: str, user_id: int) -> ActionResult:
        session = self._live_session(session_id)

        if session.has_member(user_id):
            return ActionResult(ResultKind.ALREADY_IN, session, "❌ You are already in this LFG!")

        if session.status is SessionStatus.ACTIVE:
            raise ConflictError("This team has already started!")
        if session.status is not SessionStatus.WAITING or session.is_full:
            raise ConflictError("This LFG is full!")

        if self.store.session_of_member(user_id) is not None or user_id in self._creating:
            raise ConflictError(
                "You are already in another LFG session! You can only join one session at a time. "
                "Leave your current session first."
            )

        self.store.add_member(session, user_id)
        filled = session.is_full
        if filled:
            self._start_confirmation(session)
        phase = session.confirmation_started_at

        logger.info(f"👥 {user_id} joined session {session.id} ({len(session.roster)}/{session.capacity})")

        await self.voice.grant(session, user_id)
        if filled:
            await self._ping_for_confirmation(session, phase)
        await self._publish_current(session, SessionEvent.JOINED)

        if filled:
            return ActionResult(ResultKind.JOINED, session,
                                "✅ You joined the LFG! The team is full, please confirm.")
        return ActionResult(ResultKind.JOINED, session, "✅ You joined the LFG!")

    async def confirm(self, session_id: str, user_id: int) -> ActionResult:
        session = self._live_session(session_id)

        if not session.has_member(user_id):
            raise ConflictError("You are not part of this LFG!")
        if session.status is not SessionStatus.CONFIRMING:
            raise ConflictError("This session is not in confirmation phase!")
        if user_id in session.confirmed:
            return ActionResult(ResultKind.ALREADY_CONFIRMED, session, "✅ You already confirmed!")

        session.confirmed.add(user_id)

        if session.all_confirmed():
            session.cancel_confirmation_timer()
            session.status = SessionStatus.ACTIVE
            session.confirmation_started_at = None
            session.activated_at = self._now()
            session.voice_empty_since = None
            logger.info(f"🎉 All players confirmed for session {session.id}, finalizing")

            await self._publish_current(session, SessionEvent.FINALIZED)
            return ActionResult(ResultKind.FINALIZED, session, "🎉 Everyone confirmed! Your team is ready.")

        logger.info(f"✅ {user_id} confirmed session {session.id} "
                    f"({len(session.confirmed)}/{len(session.roster)})")
        await self._publish_current(session, SessionEvent.CONFIRMED)
        return ActionResult(ResultKind.CONFIRMED, session, "✅ Confirmed! Waiting for other players...")

    async def decline(self, session_id: str, user_id: int) -> ActionResult:
        session = self._live_session(session_id)

        if not session.has_member(user_id):
            raise ConflictError("You are not part of this LFG!")
        if session.status is not SessionStatus.CONFIRMING:
            raise ConflictError("This session is not in confirmation phase!")

        if user_id == session.creator_id:
            logger.info(f"Session creator {user_id} declined session {session.id}, cancelling entire session")
            await self._end_session(session, SessionEvent.CANCELLED)
            return ActionResult(ResultKind.CANCELLED, session, "❌ You cancelled your LFG session.")

        logger.info(f"Player {user_id} declined session {session.id}, reopening")
        await self._remove_player(session, user_id)
        return ActionResult(ResultKind.DECLINED, session, "❌ You declined the LFG session.")

    async def leave(self, session_id: str, user_id: int) -> ActionResult:
        session = self._live_session(session_id)

        if not session.has_member(user_id):
            raise ConflictError("You are not in this LFG session!")
        if user_id == session.creator_id:
            raise ConflictError(
                "As the session creator, you cannot leave. Use `/endlfg` to end the entire session instead."
            )

        logger.info(f"Player {user_id} left session {session.id}")
        await self._remove_player(session, user_id)
        return ActionResult(ResultKind.LEFT, session, "✅ You left the LFG session.")

    async def terminate(self, creator_user_id: int) -> ActionResult:
        """End the session owned by `creator_user_id`, whatever its phase."""
        session = self.store.by_creator(creator_user_id)
        if session is None:
            raise NotFoundError("You don't have an active LFG session to end!")

        logger.info(f"Session {session.id} ended by creator {creator_user_id}")
        await self._end_session(session, SessionEvent.ENDED)
        return ActionResult(ResultKind.ENDED, session, "✅ Your LFG session has been ended successfully!")

    # ================================
    #       TIMEOUTS
    # ================================

    def _start_confirmation(self, session: Session):
        session.cancel_confirmation_timer()
        session.status = SessionStatus.CONFIRMING
        session.stalled_since = None
        session.confirmed.clear()
        started_at = self._now()
        session.confirmation_started_at = started_at

        session_id = session.id

        async def fire():
            await self.confirmation_timeout(session_id, started_at)

        session.confirmation_timer = self.scheduler.call_later(
            self.confirmation_timeout_delay.total_seconds(), fire, name=f"lfg-confirm-{session_id}"
        )
        logger.info(f"⏳ Started confirmation timeout for session {session_id}")

    async def confirmation_timeout(self, session_id: str, phase_started_at: Optional[datetime] = None) -> bool:
        """Drop everyone who didn't confirm (the creator always stays). Returns False for stale calls."""
        session = self.store.get(session_id)
        if session is None or session.status is not SessionStatus.CONFIRMING:
            logger.debug(f"Timeout called for session {session_id} but session not found or not confirming")
            return False
        if phase_started_at is not None and session.confirmation_started_at != phase_started_at:
            logger.debug(f"Timeout for an earlier confirmation phase of session {session_id} ignored")
            return False

        session.cancel_confirmation_timer()
        keep = [user_id for user_id in session.roster
                if user_id == session.creator_id or user_id in session.confirmed]
        dropped = self.store.set_roster(session, keep)
        self._back_to_waiting(session)

        if session.is_full:
            # Only the creator missed the deadline; nobody can join until someone leaves
            session.stalled_since = self._now()

        logger.info(f"⏰ Confirmation timed out for session {session.id}: "
                    f"keeping {len(session.roster)}, removed {len(dropped)}")

        await self.voice.revoke_many(session, dropped)
        await self._publish_current(session, SessionEvent.TIMED_OUT)
        return True

    async def expire_if_unjoined(self, session: Session) -> bool:
        """End a session where nobody joined the creator within the no-joiner deadline."""
        if self.store.get(session.id) is not session or session.status is not SessionStatus.WAITING:
            return False
        if session.roster != [session.creator_id]:
            return False
        if self._now() - session.created_at < self.no_joiner_timeout:
            return False

        logger.info(f"Found expired LFG session {session.id} with no joiners, processing timeout")
        return await self._end_session(session, SessionEvent.EXPIRED)

    async def close_if_stalled(self, session: Session) -> bool:
        """End a full Waiting session left behind by a timeout once it has stayed stuck too long."""
        if self.store.get(session.id) is not session or session.status is not SessionStatus.WAITING:
            return False
        if not session.is_full or session.stalled_since is None:
            return False
        if self._now() - session.stalled_since < self.no_joiner_timeout:
            return False

        logger.info(f"Session {session.id} stayed full without confirmation, closing")
        return await self._end_session(session, SessionEvent.CLOSED)

    async def _reap_if_idle(self, session: Session, now: datetime) -> bool:
        """Close a started session once its channel stayed empty long enough, or it got too old."""
        activated_at = session.activated_at or session.created_at
        if now - activated_at >= self.active_max_age:
            logger.info(f"Session {session.id} reached the maximum age, closing")
            return await self._end_session(session, SessionEvent.CLOSED)

        if not session.voice_channel_id:
            return await self._end_session(session, SessionEvent.CLOSED)

        try:
            members = await self.platform.voice_members(session.guild_id, session.voice_channel_id)
        except ExternalResourceError as e:
            logger.error(f"❌ Could not read voice members of session {session.id}: {e.message}")
            return False

        if session.status is not SessionStatus.ACTIVE:
            return False

        if members:
            session.voice_empty_since = None
            return False

        if session.voice_empty_since is None:
            session.voice_empty_since = now
            return False

        if now - session.voice_empty_since >= self.active_idle_timeout:
            logger.info(f"Voice channel of session {session.id} stayed empty, closing")
            return await self._end_session(session, SessionEvent.CLOSED)
        return False

    async def run_expiry_sweep(self) -> SweepReport:
        """Re-derive every deadline from stored timestamps. Safe to run at any time."""
        report = SweepReport()

        for session in self.store.sessions():
            if self.store.get(session.id) is not session:
                continue

            try:
                now = self._now()

                if session.status is SessionStatus.CONFIRMING:
                    started = session.confirmation_started_at
                    if started is not None and now - started >= self.confirmation_timeout_delay:
                        logger.info(f"Found expired confirmation for session {session.id}, processing timeout")
                        if await self.confirmation_timeout(session.id):
                            report.confirmations_timed_out += 1
                        continue

                elif session.status is SessionStatus.WAITING:
                    if await self.expire_if_unjoined(session) or await self.close_if_stalled(session):
                        report.sessions_expired += 1
                        continue

                elif session.status is SessionStatus.ACTIVE:
                    if await self._reap_if_idle(session, now):
                        report.sessions_reaped += 1
                        continue

                if session.is_live and self.store.get(session.id) is session:
                    outcomes = await self.voice.reconcile(session)
                    report.permissions_fixed += sum(1 for outcome in outcomes if outcome.ok)

            except Exception:
                logger.exception(f"❌ Error sweeping session {session.id}")

        if report.total:
            logger.info(f"🧹 Sweep: {report.confirmations_timed_out} confirmation timeout(s), "
                        f"{report.sessions_expired} expired, {report.sessions_reaped} closed, "
                        f"{report.permissions_fixed} permission fix(es)")
        return report

    # ================================
    #       PLATFORM EVENTS
    # ================================

    async def voice_state_changed(self, user_id: int, before_channel_id: Optional[int],
                                  after_channel_id: Optional[int]):
        """Kick users who enter a session channel without being in the session."""
        if not after_channel_id or after_channel_id == before_channel_id:
            return

        session = self.store.by_voice_channel(after_channel_id)
        if session is None:
            return

        if session.may_use_voice(user_id):
            session.voice_empty_since = None
            logger.debug(f"{user_id} joined LFG voice channel of session {session.id}")
            return

        await self.voice.enforce(session, user_id)

    async def member_removed(self, guild_id: int, user_id: int) -> bool:
        """A member left or was removed from the guild."""
        session = self.store.by_creator(user_id)
        if session is not None and session.guild_id == guild_id:
            logger.info(f"Creator {user_id} of session {session.id} left the server, ending session")
            return await self._end_session(session, SessionEvent.CANCELLED)

        session = self.store.session_of_member(user_id)
        if session is not None and session.guild_id == guild_id:
            logger.info(f"Player {user_id} of session {session.id} left the server")
            await self._remove_player(session, user_id)
            return True

        return False

    # ================================
    #       TRANSITION HELPERS
    # ================================

    def _back_to_waiting(self, session: Session):
        session.cancel_confirmation_timer()
        session.status = SessionStatus.WAITING
        session.confirmation_started_at = None
        session.confirmed.clear()

    async def _remove_player(self, session: Session, user_id: int):
        """Remove a non-creator; a team in confirmation goes back to waiting."""
        if session.status is SessionStatus.CONFIRMING:
            self._back_to_waiting(session)
        self.store.remove_member(session, user_id)

        if not session.roster:
            await self._end_session(session, SessionEvent.EMPTY)
            return

        await self.voice.revoke(session, user_id)
        await self._publish_current(session, SessionEvent.REOPENED)

    async def _end_session(self, session: Session, event: SessionEvent) -> bool:
        if session.status is SessionStatus.ENDED:
            return False

        session.cancel_confirmation_timer()
        session.status = SessionStatus.ENDED
        session.confirmation_started_at = None
        self.store.remove(session)
        logger.info(f"🔚 Session {session.id} ended ({event.value})")

        if session.voice_channel_id:
            try:
                await self.platform.delete_channel(session.guild_id, session.voice_channel_id)
                logger.info(f"✅ Deleted voice channel for session {session.id}")
            except ExternalResourceError as e:
                logger.error(f"❌ Error deleting voice channel of session {session.id}: {e.message}")

        await self._publish(session, event)
        return True

    async def _ping_for_confirmation(self, session: Session, phase: Optional[datetime]):
        if session.status is not SessionStatus.CONFIRMING or session.confirmation_started_at != phase:
            return

        content, mentions = confirmation_ping(session)
        try:
            await self.platform.send_message(session.guild_id, session.origin_channel_id, content, mentions)
        except ExternalResourceError as e:
            logger.error(f"❌ Error pinging players of session {session.id}: {e.message}")

    # ================================
    #       STATUS MESSAGES
    # ================================

    async def _publish_current(self, session: Session, hint: SessionEvent):
        """Publish the status matching the session's state now (it may have moved on)."""
        if self.store.get(session.id) is not session:
            return

        if session.status is SessionStatus.CONFIRMING:
            event = hint if hint is SessionEvent.CONFIRMED else SessionEvent.CONFIRMING
        elif session.status is SessionStatus.ACTIVE:
            event = SessionEvent.FINALIZED
        else:
            event = hint if hint in WAITING_EVENTS else SessionEvent.JOINED

        await self._publish(session, event)

    async def _publish(self, session: Session, event: SessionEvent) -> bool:
        """Edit the session's status message, or post a new one if that fails."""
        payload = render_status(session, event)

        if session.status_message_id:
            try:
                await self.platform.edit_status(session.guild_id, session.origin_channel_id,
                                                session.status_message_id, payload)
                return True
            except ExternalResourceError as e:
                logger.error(f"❌ Error updating status message of session {session.id}: {e.message}")

        try:
            session.status_message_id = await self.platform.post_status(
                session.guild_id, session.origin_channel_id, payload
            )
            return True
        except ExternalResourceError as e:
            logger.error(f"❌ Error sending status message for session {session.id}: {e.message}")
            return False

    # ================================
    #       LIFECYCLE
    # ================================

    def shutdown(self):
        """Cancel pending timers and forget every session (process stop)."""
        for session in self.store.sessions():
            session.cancel_confirmation_timer()
        self.store.clear()
        logger.info("✅ LFG engine stopped")
