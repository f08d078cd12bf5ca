"""
Resolve who is asking and which league they may touch.

Data-plane requests carry either ``leagueId`` plus a bearer credential
(authenticated access, membership checked) or ``publicToken`` (anonymous
access with member parity). Admin-only operations always need the former.
"""

from dataclasses import dataclass
from typing import Literal, Optional

from errors import Forbidden, Unauthorized, ValidationFailed
from store import LeagueStore


@dataclass(frozen=True)
class LeagueContext:
    league_id: str
    access: Literal["authenticated", "public"]
    user_id: Optional[str] = None
    role: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.access == "authenticated" and self.role == "admin"


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    if not authorization.lower().startswith("bearer "):
        return None
    return authorization[7:].strip() or None


def resolve_user(store: LeagueStore, authorization: Optional[str]) -> str:
    token = bearer_token(authorization)
    user_id = store.resolve_user(token) if token else None
    if not user_id:
        raise Unauthorized("Unauthorized")
    return user_id


def ensure_membership(store: LeagueStore, authorization: Optional[str], league_id: str) -> LeagueContext:
    user_id = resolve_user(store, authorization)
    role = store.role_for(user_id, league_id)
    if not role:
        raise Forbidden("Forbidden")
    return LeagueContext(league_id=league_id, access="authenticated", user_id=user_id, role=role)


def require_admin(store: LeagueStore, authorization: Optional[str], league_id: str) -> LeagueContext:
    context = ensure_membership(store, authorization, league_id)
    if not context.is_admin:
        raise Forbidden("Forbidden")
    return context


def resolve_league_context(
    store: LeagueStore,
    authorization: Optional[str],
    league_id: Optional[str],
    public_token: Optional[str],
) -> LeagueContext:
    if league_id:
        return ensure_membership(store, authorization, league_id)
    if public_token:
        league = store.resolve_public_token(public_token)
        return LeagueContext(league_id=league.id, access="public")
    raise ValidationFailed("Missing league identifier")


def resolve_player_context(
    store: LeagueStore,
    authorization: Optional[str],
    player_id: str,
    league_id: Optional[str],
    public_token: Optional[str],
) -> LeagueContext:
    """Like resolve_league_context, and the player must belong to that league."""
    if not league_id and not public_token:
        raise ValidationFailed("Missing league identifier")

    owner_id, _ = store.get_player(player_id)

    if league_id and league_id != owner_id:
        raise Forbidden("Forbidden")

    context = resolve_league_context(store, authorization, league_id, public_token)
    if context.league_id != owner_id:
        raise Forbidden("Invalid token")
    return context
