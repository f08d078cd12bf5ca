from typing import Dict, List, Sequence, Tuple

from errors import ValidationFailed
from schemas import LeaderboardEntry, SavedSession

SORT_COLUMNS = ("name", "points", "goals", "assists", "attendance")


def aggregate(
    sessions: Sequence[SavedSession],
    sort_by: str = "name",
    descending: bool = False,
) -> List[LeaderboardEntry]:
    """
    Fold session history into per-player season totals.

    Players are grouped by id. A player whose name changed between sessions
    is listed under the name from their latest session (by createdAt, later
    input position on equal timestamps).
    """
    totals: Dict[str, LeaderboardEntry] = {}
    name_seen_at: Dict[str, Tuple[str, int]] = {}

    for position, session in enumerate(sessions):
        for player in session.players:
            entry = totals.get(player.player_id)
            if entry is None:
                entry = LeaderboardEntry(player_id=player.player_id, name=player.player_name)
                totals[player.player_id] = entry

            entry.points += player.week_points
            entry.goals += player.goals
            entry.assists += player.assists
            entry.attendance += 1 if player.attendance else 0

            seen = (session.created_at, position)
            if player.player_id not in name_seen_at or seen >= name_seen_at[player.player_id]:
                name_seen_at[player.player_id] = seen
                entry.name = player.player_name

    return sort_leaderboard(list(totals.values()), sort_by, descending)


def sort_leaderboard(
    entries: Sequence[LeaderboardEntry],
    column: str = "name",
    descending: bool = False,
) -> List[LeaderboardEntry]:
    # sorted() is stable in both directions, so ties keep their input order.
    if column not in SORT_COLUMNS:
        raise ValidationFailed(f"Unknown leaderboard column '{column}'")
    if column == "name":
        return sorted(entries, key=lambda e: e.name.casefold(), reverse=descending)
    return sorted(entries, key=lambda e: getattr(e, column), reverse=descending)
