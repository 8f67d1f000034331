"""
Voice Access Controller
=======================
Grants and revokes per-user access to a session's private voice channel.

The session roster is authoritative; voice permissions follow it. Failures are
logged and returned as Outcome values, never raised, and a batch keeps going
after a failed entry.
"""

import logging
from typing import Iterable, List, Optional

from .errors import ExternalResourceError
from .models import Outcome, Session
from .platform import Platform

logger = logging.getLogger(__name__)


class VoiceAccessController:

    def __init__(self, platform: Platform):
        self.platform = platform

    async def grant(self, session: Session, user_id: int) -> Outcome:
        """Idempotently allow connect/view/speak for `user_id`."""
        if not session.voice_channel_id:
            return Outcome('grant', user_id, False, "session has no voice channel")

        try:
            await self.platform.set_user_permission(session.guild_id, session.voice_channel_id, user_id)
        except ExternalResourceError as e:
            logger.error(f"❌ Error granting voice access to {user_id} in session {session.id}: {e.message}")
            return Outcome('grant', user_id, False, e.message)

        logger.info(f"✅ Granted voice access to {user_id} in session {session.id}")
        return Outcome('grant', user_id, True)

    async def revoke(self, session: Session, user_id: int) -> Outcome:
        """Idempotently remove the user's permission and disconnect them if connected."""
        if not session.voice_channel_id:
            return Outcome('revoke', user_id, False, "session has no voice channel")

        errors = []
        try:
            await self.platform.remove_user_permission(session.guild_id, session.voice_channel_id, user_id)
        except ExternalResourceError as e:
            errors.append(e.message)

        # Disconnect even if the permission removal failed
        try:
            if await self.platform.disconnect_user(session.guild_id, session.voice_channel_id, user_id):
                logger.info(f"🔇 Disconnected {user_id} from session {session.id} voice channel")
        except ExternalResourceError as e:
            errors.append(e.message)

        if errors:
            error = '; '.join(errors)
            logger.error(f"❌ Error removing voice access from {user_id} in session {session.id}: {error}")
            return Outcome('revoke', user_id, False, error)

        return Outcome('revoke', user_id, True)

    async def grant_many(self, session: Session, user_ids: Iterable[int]) -> List[Outcome]:
        return [await self.grant(session, user_id) for user_id in list(user_ids)]

    async def revoke_many(self, session: Session, user_ids: Iterable[int]) -> List[Outcome]:
        return [await self.revoke(session, user_id) for user_id in list(user_ids)]

    async def enforce(self, session: Session, user_id: int) -> Optional[Outcome]:
        """Disconnect a user who entered the channel without being part of the session."""
        if session.may_use_voice(user_id) or not session.voice_channel_id:
            return None

        try:
            await self.platform.disconnect_user(session.guild_id, session.voice_channel_id, user_id)
        except ExternalResourceError as e:
            logger.error(f"❌ Error kicking unauthorized user {user_id} from session {session.id}: {e.message}")
            return Outcome('disconnect', user_id, False, e.message)

        logger.info(f"🚫 Kicked {user_id} from LFG voice channel of session {session.id} - not in session")
        return Outcome('disconnect', user_id, True)

    async def reconcile(self, session: Session) -> List[Outcome]:
        """Bring channel permissions back in line with the roster."""
        if not session.voice_channel_id:
            return []

        try:
            permitted = set(await self.platform.permitted_users(session.guild_id, session.voice_channel_id))
        except ExternalResourceError as e:
            logger.error(f"❌ Could not read permissions of session {session.id}: {e.message}")
            return []

        missing = [user_id for user_id in session.roster if user_id not in permitted]
        stray = [user_id for user_id in permitted if not session.may_use_voice(user_id)]

        outcomes = await self.grant_many(session, missing)
        outcomes += await self.revoke_many(session, stray)
        if outcomes:
            logger.info(f"🔄 Reconciled voice access of session {session.id}: "
                        f"{len(missing)} granted, {len(stray)} revoked")
        return outcomes
