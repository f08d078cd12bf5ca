"""
In-memory persistence and identity collaborator.

Stands in for the managed database/auth platform: bearer tokens resolve to
users, users hold roles in leagues, and each league owns its players, one
live game row and its session history. Live state writes are pushed to
subscribers as change notifications.
"""

from __future__ import annotations

import asyncio
import random
import secrets
import string
import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from errors import NotFound
from logger import get_logger
from schemas import (
    League,
    LeagueSummary,
    LiveGameState,
    Player,
    SavedSession,
    SavedSessionPlayer,
    ScoringConfig,
    SessionPayload,
)

log = get_logger("store")


def _gen_id(prefix: str) -> str:
    return f"{prefix}_" + "".join(random.choices(string.ascii_lowercase + string.digits, k=8))


def _gen_public_token() -> str:
    return secrets.token_urlsafe(18)


class LeagueStore:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._tokens: Dict[str, str] = {}
        self._leagues: Dict[str, LeagueSummary] = {}
        self._members: Dict[Tuple[str, str], str] = {}
        self._players: Dict[str, Tuple[str, Player]] = {}
        self._live_states: Dict[str, LiveGameState] = {}
        self._sessions: Dict[str, List[SavedSession]] = {}
        self._subscribers: Dict[str, List[Tuple[asyncio.AbstractEventLoop, asyncio.Queue]]] = {}

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    def issue_token(self, user_id: str, token: Optional[str] = None) -> str:
        token = token or secrets.token_urlsafe(24)
        with self._lock:
            self._tokens[token] = user_id
        return token

    def resolve_user(self, token: str) -> Optional[str]:
        with self._lock:
            return self._tokens.get(token)

    def role_for(self, user_id: str, league_id: str) -> Optional[str]:
        with self._lock:
            return self._members.get((league_id, user_id))

    # ------------------------------------------------------------------
    # Leagues
    # ------------------------------------------------------------------

    def list_leagues(self, user_id: str) -> List[League]:
        with self._lock:
            leagues = [
                League(**self._leagues[league_id].model_dump(), role=role)
                for (league_id, member_id), role in self._members.items()
                if member_id == user_id and league_id in self._leagues
            ]
        return sorted(leagues, key=lambda league: league.name)

    def create_league(self, user_id: str, name: str) -> League:
        league = LeagueSummary(id=_gen_id("league"), name=name, public_token=_gen_public_token())
        with self._lock:
            self._leagues[league.id] = league
            self._members[(league.id, user_id)] = "admin"
            self._sessions[league.id] = []
        log.info(f"League {league.id} created by {user_id}")
        return League(**league.model_dump(), role="admin")

    def add_member(self, league_id: str, user_id: str, role: str = "member") -> None:
        self.get_league(league_id)
        with self._lock:
            self._members[(league_id, user_id)] = role

    def get_league(self, league_id: str) -> LeagueSummary:
        with self._lock:
            league = self._leagues.get(league_id)
        if not league:
            raise NotFound("League not found")
        return league

    def resolve_public_token(self, token: str) -> LeagueSummary:
        with self._lock:
            leagues = list(self._leagues.values())
        for league in leagues:
            if secrets.compare_digest(league.public_token, token):
                return league
        raise NotFound("League not found")

    def get_scoring_config(self, league_id: str) -> ScoringConfig:
        return self.get_league(league_id).scoring_config()

    def put_scoring_config(self, league_id: str, config: ScoringConfig) -> ScoringConfig:
        with self._lock:
            league = self.get_league(league_id)
            self._leagues[league_id] = league.model_copy(update=config.model_dump())
        return config

    # ------------------------------------------------------------------
    # Players
    # ------------------------------------------------------------------

    def get_players(self, league_id: str) -> List[Player]:
        with self._lock:
            entries = list(self._players.values())
        players = [p for owner, p in entries if owner == league_id]
        return sorted(players, key=lambda p: p.name)

    def get_player(self, player_id: str) -> Tuple[str, Player]:
        """Return (league_id, player)."""
        with self._lock:
            found = self._players.get(player_id)
        if not found:
            raise NotFound("Player not found")
        return found

    def add_player(self, league_id: str, name: str) -> Player:
        player = Player(id=_gen_id("player"), name=name)
        with self._lock:
            self._players[player.id] = (league_id, player)
        return player

    def rename_player(self, player_id: str, name: str) -> Player:
        with self._lock:
            league_id, player = self.get_player(player_id)
            renamed = player.model_copy(update={"name": name})
            self._players[player_id] = (league_id, renamed)
        return renamed

    def delete_player(self, player_id: str) -> None:
        with self._lock:
            self.get_player(player_id)
            # Session history keeps its own copy of the name.
            del self._players[player_id]

    # ------------------------------------------------------------------
    # Live game state
    # ------------------------------------------------------------------

    def get_live_state(self, league_id: str) -> Optional[LiveGameState]:
        with self._lock:
            state = self._live_states.get(league_id)
        return state.model_copy(deep=True) if state else None

    def put_live_state(self, league_id: str, state: LiveGameState) -> LiveGameState:
        with self._lock:
            event_type = "UPDATE" if league_id in self._live_states else "INSERT"
            self._live_states[league_id] = state.model_copy(deep=True)
        self._publish(league_id, {"eventType": event_type, "state": state.model_dump(by_alias=True)})
        return state

    def subscribe(self, league_id: str) -> asyncio.Queue:
        """Register for change notifications; call from the consuming event loop."""
        queue: asyncio.Queue = asyncio.Queue()
        loop = asyncio.get_running_loop()
        with self._lock:
            self._subscribers.setdefault(league_id, []).append((loop, queue))
        return queue

    def unsubscribe(self, league_id: str, queue: asyncio.Queue) -> None:
        with self._lock:
            subscribers = self._subscribers.get(league_id, [])
            self._subscribers[league_id] = [s for s in subscribers if s[1] is not queue]

    def _publish(self, league_id: str, event: dict) -> None:
        with self._lock:
            subscribers = list(self._subscribers.get(league_id, []))
        for loop, queue in subscribers:
            try:
                loop.call_soon_threadsafe(queue.put_nowait, event)
            except RuntimeError:
                log.debug(f"Dropping closed live state subscriber for {league_id}")
                self.unsubscribe(league_id, queue)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def list_sessions(self, league_id: str) -> List[SavedSession]:
        with self._lock:
            return list(self._sessions.get(league_id, []))

    def create_session(self, league_id: str, payload: SessionPayload) -> SavedSession:
        players = []
        for entry in payload.players:
            with self._lock:
                known = self._players.get(entry.player_id)
            name = known[1].name if known else (entry.player_name or "Unknown")
            players.append(SavedSessionPlayer(**entry.model_dump(exclude={"player_name"}), player_name=name))

        session = SavedSession(
            id=_gen_id("session"),
            created_at=datetime.now(timezone.utc).isoformat(),
            team_a_score=payload.team_a_score,
            team_b_score=payload.team_b_score,
            winner=payload.winner,
            players=players,
            goal_events=payload.goal_events,
            team_names=payload.team_names,
        )
        with self._lock:
            self._sessions.setdefault(league_id, []).insert(0, session)
        return session

    def delete_session(self, league_id: str, session_id: str) -> None:
        with self._lock:
            sessions = self._sessions.get(league_id, [])
            remaining = [s for s in sessions if s.id != session_id]
            if len(remaining) == len(sessions):
                raise NotFound("Session not found")
            self._sessions[league_id] = remaining
