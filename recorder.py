from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import List, Optional, Sequence

from pydantic import ValidationError

from errors import (
    Forbidden,
    ScoretrackerError,
    TERMINAL_ERRORS,
    ValidationFailed,
)
from leaderboard import aggregate
from logger import get_logger
from schemas import (
    GamePlayer,
    GoalEvent,
    LeaderboardEntry,
    SavedSession,
    ScoringConfig,
    SessionPayload,
    TeamNames,
)
from scoring import compute_weekly_points

log = get_logger("recorder")

OFFLINE_MESSAGE = "Saved locally. Will sync when back online."


@dataclass
class PendingSubmission:
    players: List[GamePlayer]
    goal_events: List[GoalEvent]
    team_names: Optional[TeamNames] = None


@dataclass
class RecordResult:
    """
    Outcome of a submission.

    status is one of:
      - saved:    persisted, history refreshed
      - queued:   offline, kept locally until reconnect
      - failed:   the request failed; retry_pending says whether it is kept
      - rejected: invalid input, nothing sent
    """

    status: str
    message: Optional[str] = None
    session: Optional[SavedSession] = None
    retry_pending: bool = False


class SessionRecorder:
    """Turns a finished live game into a saved session, surviving outages."""

    def __init__(
        self,
        api,
        scoring_config: Optional[ScoringConfig] = None,
        *,
        online: bool = True,
        request_timeout: float = 10.0,
    ) -> None:
        self.scoring_config = scoring_config or ScoringConfig()
        self.online = online
        self.pending: Optional[PendingSubmission] = None
        self.message: Optional[str] = None
        self.history: List[SavedSession] = []
        self.leaderboard: List[LeaderboardEntry] = []

        self._api = api
        self._timeout = request_timeout

    async def submit(
        self,
        players: Sequence[GamePlayer],
        goal_events: Sequence[GoalEvent],
        team_names: Optional[TeamNames] = None,
    ) -> RecordResult:
        snapshot = PendingSubmission(
            players=[p.model_copy(deep=True) for p in players],
            goal_events=[e.model_copy(deep=True) for e in goal_events],
            team_names=team_names.model_copy() if team_names else None,
        )

        if not snapshot.players:
            self.message = "At least one player is required"
            return RecordResult("rejected", self.message)

        scored = compute_weekly_points(snapshot.players, self.scoring_config)

        if not self.online:
            self.pending = snapshot
            self.message = OFFLINE_MESSAGE
            log.info("Offline; session kept locally")
            return RecordResult("queued", self.message, retry_pending=True)

        payload = SessionPayload(
            team_a_score=scored.team_scores.A,
            team_b_score=scored.team_scores.B,
            winner=scored.winner,
            players=scored.payload,
            goal_events=snapshot.goal_events,
            team_names=snapshot.team_names,
        )

        try:
            session = await asyncio.wait_for(self._api.create_session(payload), timeout=self._timeout)
        except (TERMINAL_ERRORS + (ValidationFailed,)) as exc:
            self.message = exc.message
            log.warning(f"Session rejected by server: {exc.message}")
            return RecordResult("failed", exc.message)
        except (asyncio.TimeoutError, ScoretrackerError) as exc:
            self.pending = snapshot
            self.message = exc.message if isinstance(exc, ScoretrackerError) else "Failed to save session"
            log.info(f"Session save failed, kept for retry: {self.message}")
            return RecordResult("failed", self.message, retry_pending=True)

        self.pending = None
        self.message = None
        log.info(f"Session {session.id} saved ({session.team_a_score}-{session.team_b_score})")
        await self.refresh_history()
        return RecordResult("saved", session=session)

    async def set_online(self, online: bool) -> Optional[RecordResult]:
        """Record connectivity; on reconnect resubmit the one pending session."""
        self.online = online
        if not online or self.pending is None:
            return None
        pending = self.pending
        self.pending = None
        return await self.submit(pending.players, pending.goal_events, pending.team_names)

    async def refresh_history(self) -> List[SavedSession]:
        """Reload history; on failure keep the last known list and set ``message``."""
        try:
            self.history = await asyncio.wait_for(self._api.list_sessions(), timeout=self._timeout)
        except (asyncio.TimeoutError, ScoretrackerError, ValidationError) as exc:
            self.message = exc.message if isinstance(exc, ScoretrackerError) else "Unable to load session history"
            log.info(f"History refresh failed: {self.message}")
            return self.history
        self.leaderboard = aggregate(self.history)
        return self.history

    async def delete_session(self, session_id: str) -> None:
        if not self._api.access.is_admin:
            raise Forbidden("Only league admins can delete sessions")
        await self._api.delete_session(session_id)
        self.history = [s for s in self.history if s.id != session_id]
        self.leaderboard = aggregate(self.history)
