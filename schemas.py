"""
Schemas for the Floorball Scoretracker

Pydantic models below describe the core domain. Attributes are snake_case in
Python and camelCase on the wire (e.g. ``last_updated`` <-> ``lastUpdated``),
so payloads written by browser clients validate unchanged.

Persistence is delegated to the store collaborator; these models are the
shape every layer agrees on.
"""

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

TeamSide = Literal["A", "B"]
Winner = Literal["A", "B", "Tie"]
Stage = Literal["roster", "setup", "game", "summary"]
LeagueRole = Literal["admin", "member"]
Number = Union[int, float]

STAGES = ("roster", "setup", "game", "summary")
TEAM_SIDES = ("A", "B")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Player(CamelModel):
    id: str = Field(..., description="Unique player id")
    name: str


class GamePlayer(Player):
    """Roster player plus the live fields of an in-progress game"""

    team: TeamSide = "A"
    goals: int = Field(0, ge=0)
    assists: int = Field(0, ge=0)


class GoalEvent(CamelModel):
    """Timeline entry appended each time a goal is attributed"""

    id: str
    player_id: str
    player_name: str = ""
    team: TeamSide
    timestamp: str = Field(..., description="ISO-8601 time the goal was recorded")


class TeamNames(CamelModel):
    A: str = Field("Team A", alias="A")
    B: str = Field("Team B", alias="B")

    def name_for(self, side: str) -> str:
        return self.B if side == "B" else self.A


class TeamScores(CamelModel):
    A: int = Field(0, alias="A")
    B: int = Field(0, alias="B")


class LiveGameState(CamelModel):
    """
    The single shared document describing a league's in-progress game.
    One per league; writers always replace the whole document.
    """

    stage: Stage = "roster"
    selected_player_ids: List[str] = Field(default_factory=list)
    assignments: Dict[str, TeamSide] = Field(default_factory=dict)
    game_players: List[GamePlayer] = Field(default_factory=list)
    team_names: TeamNames = Field(default_factory=TeamNames)
    goal_events: List[GoalEvent] = Field(default_factory=list)
    seconds_elapsed: int = Field(0, ge=0)
    is_timer_running: bool = False
    timer_owner_id: Optional[str] = None
    alarm_at_seconds: Optional[int] = Field(None, ge=0)
    alarm_acknowledged: bool = False
    last_updated: int = Field(0, description="Epoch milliseconds of the last write")


class ScoringConfig(CamelModel):
    attendance_points: Number = 1
    goal_points: Number = 1
    win_bonus: Number = 5
    enable_assists: bool = False
    assist_points: Number = 1


class SessionPlayerPayload(CamelModel):
    player_id: str
    player_name: Optional[str] = None
    team: TeamSide
    goals: int = 0
    assists: int = 0
    attendance: bool = True
    week_points: Number = 0


class SessionPayload(CamelModel):
    team_a_score: int
    team_b_score: int
    winner: Winner
    players: List[SessionPlayerPayload] = Field(default_factory=list)
    goal_events: List[GoalEvent] = Field(default_factory=list)
    team_names: Optional[TeamNames] = None


class SavedSessionPlayer(SessionPlayerPayload):
    player_name: str = "Unknown"


class SavedSession(CamelModel):
    """Immutable record of one completed game"""

    id: str
    created_at: str
    team_a_score: int
    team_b_score: int
    winner: Winner
    players: List[SavedSessionPlayer] = Field(default_factory=list)
    goal_events: List[GoalEvent] = Field(default_factory=list)
    team_names: Optional[TeamNames] = None


class LeagueSummary(CamelModel):
    """League as seen through its public share token (no role)"""

    id: str
    name: str
    public_token: str = Field(..., description="Opaque share token for anonymous access")
    attendance_points: Number = 1
    goal_points: Number = 1
    win_bonus: Number = 5
    enable_assists: bool = False
    assist_points: Number = 1

    def scoring_config(self) -> ScoringConfig:
        return ScoringConfig(
            attendance_points=self.attendance_points,
            goal_points=self.goal_points,
            win_bonus=self.win_bonus,
            enable_assists=self.enable_assists,
            assist_points=self.assist_points,
        )


class League(LeagueSummary):
    role: LeagueRole = "member"


class LeaderboardEntry(CamelModel):
    player_id: str
    name: str
    points: Number = 0
    goals: int = 0
    assists: int = 0
    attendance: int = 0


class CreateLeagueRequest(CamelModel):
    name: Optional[str] = None


class PlayerNameRequest(CamelModel):
    name: Optional[str] = None


class LiveStateRequest(CamelModel):
    # Raw document; repaired by live_state.sanitize before storage.
    state: Any = None
