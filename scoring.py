from dataclasses import dataclass
from typing import List, Optional, Sequence

from schemas import GamePlayer, ScoringConfig, SessionPlayerPayload, TeamScores


@dataclass
class WeeklyPoints:
    payload: List[SessionPlayerPayload]
    team_scores: TeamScores
    winner: str


def calculate_team_score(players: Sequence[GamePlayer], side: str) -> int:
    return sum(player.goals for player in players if player.team == side)


def compute_weekly_points(
    players: Sequence[GamePlayer],
    config: Optional[ScoringConfig] = None,
) -> WeeklyPoints:
    """
    Score one finished game.

    Every listed player attended and earns attendance points. Goal and
    assist counts are used as given, negatives included; clamping belongs to
    live_state.sanitize.
    """
    config = config or ScoringConfig()

    team_scores = TeamScores(
        A=calculate_team_score(players, "A"),
        B=calculate_team_score(players, "B"),
    )

    winner = "Tie"
    if team_scores.A > team_scores.B:
        winner = "A"
    elif team_scores.B > team_scores.A:
        winner = "B"

    payload = []
    for player in players:
        week_points = config.attendance_points + player.goals * config.goal_points
        if config.enable_assists:
            week_points += player.assists * config.assist_points
        if player.team == winner:
            week_points += config.win_bonus

        payload.append(
            SessionPlayerPayload(
                player_id=player.id,
                player_name=player.name,
                team=player.team,
                goals=player.goals,
                assists=player.assists,
                attendance=True,
                week_points=week_points,
            )
        )

    return WeeklyPoints(payload=payload, team_scores=team_scores, winner=winner)
