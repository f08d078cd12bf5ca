"""
Live game state: normalization and the mutations applied by scorekeepers.

Every mutation takes the current LiveGameState and returns a new one
stamped with ``last_updated``; nothing is modified in place. ``sanitize``
is the boundary for documents arriving from storage or other clients: it
repairs whatever it is given into a well-formed, fully typed state and
never raises.
"""

import math
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence

from schemas import (
    STAGES,
    TEAM_SIDES,
    GamePlayer,
    GoalEvent,
    LiveGameState,
    Player,
    TeamNames,
)


def now_ms() -> int:
    return int(time.time() * 1000)


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def new_event_id() -> str:
    return str(uuid.uuid4())


def empty_state() -> LiveGameState:
    return LiveGameState(last_updated=now_ms())


# ----------------------------------------------------------------------
# Normalization
# ----------------------------------------------------------------------

def _is_number(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def _coerce_count(value: Any) -> int:
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return 0
    if not _is_number(value):
        return 0
    return max(0, int(value))


def _optional_count(value: Any) -> Optional[int]:
    if value is None:
        return None
    if not _is_number(value):
        return None
    return max(0, int(value))


def _text_id(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return ""


def _side(value: Any) -> str:
    return "B" if value == "B" else "A"


def _sanitize_players(raw: Any) -> List[GamePlayer]:
    if not isinstance(raw, list):
        return []
    players: List[GamePlayer] = []
    seen = set()
    for entry in raw:
        if not isinstance(entry, Mapping):
            continue
        player_id = _text_id(entry.get("id"))
        if not player_id or player_id in seen:
            continue
        seen.add(player_id)
        name = entry.get("name")
        players.append(
            GamePlayer(
                id=player_id,
                name=name if isinstance(name, str) else "",
                team=_side(entry.get("team")),
                goals=_coerce_count(entry.get("goals")),
                assists=_coerce_count(entry.get("assists")),
            )
        )
    return players


def _sanitize_events(raw: Any) -> List[GoalEvent]:
    if not isinstance(raw, list):
        return []
    events: List[GoalEvent] = []
    for entry in raw:
        if not isinstance(entry, Mapping):
            continue
        player_id = _text_id(entry.get("playerId"))
        if not player_id:
            continue
        event_id = entry.get("id")
        timestamp = entry.get("timestamp")
        player_name = entry.get("playerName")
        events.append(
            GoalEvent(
                id=event_id if isinstance(event_id, str) and event_id else new_event_id(),
                player_id=player_id,
                player_name=player_name if isinstance(player_name, str) else "",
                team=_side(entry.get("team")),
                timestamp=timestamp if isinstance(timestamp, str) and timestamp else now_iso(),
            )
        )
    return events


def _sanitize_team_names(raw: Any) -> TeamNames:
    if not isinstance(raw, Mapping):
        return TeamNames()
    a, b = raw.get("A"), raw.get("B")
    return TeamNames(
        A=a if isinstance(a, str) else "Team A",
        B=b if isinstance(b, str) else "Team B",
    )


def sanitize(raw: Any) -> LiveGameState:
    if isinstance(raw, LiveGameState):
        raw = raw.model_dump(by_alias=True)
    if not isinstance(raw, Mapping):
        return empty_state()

    stage = raw.get("stage")

    selected: List[str] = []
    if isinstance(raw.get("selectedPlayerIds"), list):
        for value in raw["selectedPlayerIds"]:
            player_id = _text_id(value)
            if player_id and player_id not in selected:
                selected.append(player_id)

    assignments: Dict[str, str] = {}
    if isinstance(raw.get("assignments"), Mapping):
        for key, value in raw["assignments"].items():
            if isinstance(key, str) and key and value in TEAM_SIDES:
                assignments[key] = value

    owner = raw.get("timerOwnerId")
    last_updated = raw.get("lastUpdated")

    return LiveGameState(
        stage=stage if stage in STAGES else "roster",
        selected_player_ids=selected,
        assignments=assignments,
        game_players=_sanitize_players(raw.get("gamePlayers")),
        team_names=_sanitize_team_names(raw.get("teamNames")),
        goal_events=_sanitize_events(raw.get("goalEvents")),
        seconds_elapsed=_coerce_count(raw.get("secondsElapsed")),
        is_timer_running=raw.get("isTimerRunning") is True,
        timer_owner_id=owner if isinstance(owner, str) and owner else None,
        alarm_at_seconds=_optional_count(raw.get("alarmAtSeconds")),
        alarm_acknowledged=raw.get("alarmAcknowledged") is True,
        last_updated=int(last_updated) if _is_number(last_updated) else now_ms(),
    )


# ----------------------------------------------------------------------
# Mutations
# ----------------------------------------------------------------------

def _next_stamp(state: LiveGameState) -> int:
    # Never older than the state being replaced, even if the local clock lags
    # behind a remote writer's.
    return max(now_ms(), state.last_updated + 1)


def _stamp(state: LiveGameState, **updates: Any) -> LiveGameState:
    updates["last_updated"] = _next_stamp(state)
    return state.model_copy(update=updates, deep=True)


def _find_player(state: LiveGameState, player_id: str) -> Optional[GamePlayer]:
    for player in state.game_players:
        if player.id == player_id:
            return player
    return None


def adjust_goal(state: LiveGameState, player_id: str, delta: int) -> LiveGameState:
    """
    Change a player's goal count, keeping the timeline in step.

    Positive deltas append one event per goal; negative deltas remove that
    player's most recent events first, as many as exist.
    """
    target = _find_player(state, player_id)
    if not delta or target is None:
        return state

    players = [
        p.model_copy(update={"goals": max(0, p.goals + delta)}) if p.id == player_id else p
        for p in state.game_players
    ]
    events = list(state.goal_events)

    if delta > 0:
        for _ in range(delta):
            events.append(
                GoalEvent(
                    id=new_event_id(),
                    player_id=player_id,
                    player_name=target.name,
                    team=target.team,
                    timestamp=now_iso(),
                )
            )
    else:
        remaining = -delta
        for index in range(len(events) - 1, -1, -1):
            if remaining == 0:
                break
            if events[index].player_id == player_id:
                del events[index]
                remaining -= 1

    return _stamp(state, game_players=players, goal_events=events)


def adjust_assist(state: LiveGameState, player_id: str, delta: int) -> LiveGameState:
    if not delta or _find_player(state, player_id) is None:
        return state
    players = [
        p.model_copy(update={"assists": max(0, p.assists + delta)}) if p.id == player_id else p
        for p in state.game_players
    ]
    return _stamp(state, game_players=players)


def assign_team(state: LiveGameState, player_id: str, team: str) -> LiveGameState:
    """Move a player to another side; their existing goals follow them."""
    current = _find_player(state, player_id)
    if team not in TEAM_SIDES or current is None or current.team == team:
        return state

    players = [
        p.model_copy(update={"team": team}) if p.id == player_id else p
        for p in state.game_players
    ]
    events = [
        e.model_copy(update={"team": team}) if e.player_id == player_id else e
        for e in state.goal_events
    ]
    assignments = dict(state.assignments)
    assignments[player_id] = team

    return _stamp(state, game_players=players, goal_events=events, assignments=assignments)


def toggle_selection(state: LiveGameState, player_id: str) -> LiveGameState:
    selected = list(state.selected_player_ids)
    assignments = dict(state.assignments)

    if player_id in selected:
        selected.remove(player_id)
        assignments.pop(player_id, None)
    else:
        selected.append(player_id)
        assignments.setdefault(player_id, "A")

    return _stamp(state, selected_player_ids=selected, assignments=assignments)


def toggle_team(state: LiveGameState, player_id: str) -> LiveGameState:
    assignments = dict(state.assignments)
    assignments[player_id] = "B" if assignments.get(player_id) == "A" else "A"
    return _stamp(state, assignments=assignments)


def set_team_name(state: LiveGameState, side: str, name: str) -> LiveGameState:
    if side not in TEAM_SIDES:
        return state
    names = state.team_names.model_copy(update={side: name})
    return _stamp(state, team_names=names)


def go_to_setup(state: LiveGameState) -> LiveGameState:
    return _stamp(state, stage="setup", alarm_acknowledged=False)


def go_to_roster(state: LiveGameState) -> LiveGameState:
    return _stamp(state, stage="roster", alarm_acknowledged=False)


def start_game(state: LiveGameState, players: Sequence[Player]) -> LiveGameState:
    """Materialize game players from the selected roster and team assignments."""
    game_players = [
        GamePlayer(
            id=player.id,
            name=player.name,
            team=state.assignments.get(player.id, "A"),
        )
        for player in players
    ]
    return _stamp(
        state,
        stage="game",
        game_players=game_players,
        goal_events=[],
        seconds_elapsed=0,
        is_timer_running=False,
        timer_owner_id=None,
        alarm_acknowledged=False,
    )


def end_game(state: LiveGameState) -> LiveGameState:
    return _stamp(
        state,
        stage="summary",
        is_timer_running=False,
        timer_owner_id=None,
        alarm_at_seconds=None,
        alarm_acknowledged=False,
    )


def reset(state: Optional[LiveGameState] = None) -> LiveGameState:
    return LiveGameState(last_updated=_next_stamp(state) if state is not None else now_ms())


# ----------------------------------------------------------------------
# Clock & alarm
# ----------------------------------------------------------------------

def start_timer(state: LiveGameState, client_id: str) -> LiveGameState:
    return _stamp(state, is_timer_running=True, timer_owner_id=client_id)


def pause_timer(state: LiveGameState) -> LiveGameState:
    return _stamp(state, is_timer_running=False, timer_owner_id=None)


def tick(state: LiveGameState, client_id: str) -> LiveGameState:
    """Advance the clock one second, only on the client that owns it."""
    if not state.is_timer_running or state.timer_owner_id != client_id:
        return state
    return _stamp(state, seconds_elapsed=state.seconds_elapsed + 1)


def set_alarm(state: LiveGameState, seconds: Optional[int]) -> LiveGameState:
    target = None if seconds is None else max(0, int(seconds))
    return _stamp(state, alarm_at_seconds=target, alarm_acknowledged=False)


def acknowledge_alarm(state: LiveGameState) -> LiveGameState:
    return _stamp(state, alarm_acknowledged=True)


def is_alarm_due(state: LiveGameState) -> bool:
    return (
        state.alarm_at_seconds is not None
        and state.seconds_elapsed >= state.alarm_at_seconds
        and not state.alarm_acknowledged
    )
