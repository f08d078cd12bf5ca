"""HTTP client for the scoretracker API, used by the synchronizer and recorder."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional, Union

import httpx

from errors import Forbidden, NetworkUnavailable, error_for_status
from live_state import sanitize
from logger import get_logger
from schemas import (
    League,
    LeagueSummary,
    LiveGameState,
    Player,
    SavedSession,
    ScoringConfig,
    SessionPayload,
)

log = get_logger("api_client")

DEFAULT_TIMEOUT = 10.0


@dataclass(frozen=True)
class AuthenticatedAccess:
    """Signed-in member acting on one of their leagues."""

    league: League
    access_token: str

    @property
    def is_admin(self) -> bool:
        return self.league.role == "admin"

    def params(self) -> Dict[str, str]:
        return {"leagueId": self.league.id}

    def headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}


@dataclass(frozen=True)
class PublicAccess:
    """Anonymous access through a league's share token."""

    league: LeagueSummary

    @property
    def is_admin(self) -> bool:
        return False

    def params(self) -> Dict[str, str]:
        return {"publicToken": self.league.public_token}

    def headers(self) -> Dict[str, str]:
        return {}


LeagueAccess = Union[AuthenticatedAccess, PublicAccess]


def _error_detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        detail = payload.get("detail") or payload.get("error")
        if isinstance(detail, str) and detail:
            return detail
    return response.reason_phrase or f"HTTP {response.status_code}"


class _ApiClient:
    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._timeout = timeout
        # Allow caller to supply a shared client; otherwise own lifecycle
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout),
        )
        self._client_owned = client is None

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            raise NetworkUnavailable(f"{method} {path} timed out") from exc
        except httpx.TransportError as exc:
            raise NetworkUnavailable(str(exc) or "Network unavailable") from exc

        if response.is_error:
            raise error_for_status(response.status_code, _error_detail(response))
        if not response.content:
            return {}
        return response.json()

    async def close(self) -> None:
        if self._client_owned:
            await self._client.aclose()


class AccountClient(_ApiClient):
    """League directory calls made outside any single league."""

    def __init__(self, base_url: str, access_token: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(base_url, **kwargs)
        self._headers = {"Authorization": f"Bearer {access_token}"} if access_token else {}

    async def list_leagues(self) -> List[League]:
        payload = await self._request("GET", "/api/leagues", headers=self._headers)
        return [League.model_validate(entry) for entry in payload.get("leagues", [])]

    async def create_league(self, name: str) -> League:
        payload = await self._request("POST", "/api/leagues", json={"name": name}, headers=self._headers)
        return League.model_validate(payload["league"])

    async def resolve_public_league(self, token: str) -> LeagueSummary:
        payload = await self._request("GET", "/api/public/league", params={"token": token})
        return LeagueSummary.model_validate(payload["league"])


class LeagueApiClient(_ApiClient):
    """Data-plane calls for one league, authorized by ``access``."""

    def __init__(self, base_url: str, access: LeagueAccess, **kwargs: Any) -> None:
        super().__init__(base_url, **kwargs)
        self.access = access

    def _scoped(self, **kwargs: Any) -> Dict[str, Any]:
        kwargs["params"] = {**self.access.params(), **kwargs.get("params", {})}
        kwargs["headers"] = {**self.access.headers(), **kwargs.get("headers", {})}
        return kwargs

    def _require_authenticated(self) -> AuthenticatedAccess:
        if not isinstance(self.access, AuthenticatedAccess):
            raise Forbidden("Shared links cannot perform admin actions")
        return self.access

    # ------------------------------------------------------------------
    # Players
    # ------------------------------------------------------------------

    async def list_players(self) -> List[Player]:
        payload = await self._request("GET", "/api/players", **self._scoped())
        return [Player.model_validate(entry) for entry in payload.get("players", [])]

    async def add_player(self, name: str) -> Player:
        payload = await self._request("POST", "/api/players", **self._scoped(json={"name": name}))
        return Player.model_validate(payload["player"])

    async def rename_player(self, player_id: str, name: str) -> None:
        await self._request("PUT", f"/api/players/{player_id}", **self._scoped(json={"name": name}))

    async def delete_player(self, player_id: str) -> None:
        await self._request("DELETE", f"/api/players/{player_id}", **self._scoped())

    # ------------------------------------------------------------------
    # Live game
    # ------------------------------------------------------------------

    async def fetch_live_state(self) -> Optional[LiveGameState]:
        payload = await self._request("GET", "/api/live-game", **self._scoped())
        state = payload.get("state")
        return sanitize(state) if state is not None else None

    async def put_live_state(self, state: LiveGameState) -> LiveGameState:
        body = {"state": state.model_dump(by_alias=True)}
        payload = await self._request("PUT", "/api/live-game", **self._scoped(json=body))
        return sanitize(payload.get("state"))

    async def subscribe_live_state(self) -> AsyncIterator[Optional[LiveGameState]]:
        """
        Yield live state change notifications from the SSE feed.

        A deleted row yields None. Iteration ends when the server closes the
        stream; transport failures surface as NetworkUnavailable.
        """
        kwargs = self._scoped(
            headers={"Accept": "text/event-stream", "Cache-Control": "no-cache"},
            timeout=httpx.Timeout(self._timeout, read=None),
        )
        try:
            async with self._client.stream("GET", "/api/live-game/stream", **kwargs) as resp:
                if resp.is_error:
                    await resp.aread()
                    raise error_for_status(resp.status_code, _error_detail(resp))

                data_lines: List[str] = []
                async for line in resp.aiter_lines():
                    if line.startswith(":"):
                        continue
                    if line.startswith("data:"):
                        data_lines.append(line[5:].lstrip())
                        continue
                    if line or not data_lines:
                        continue

                    raw = "\n".join(data_lines)
                    data_lines = []
                    try:
                        change = json.loads(raw)
                    except ValueError:
                        log.warning(f"Skipping undecodable live state frame: {raw[:200]}")
                        continue
                    if change.get("eventType") == "DELETE" or change.get("state") is None:
                        yield None
                    else:
                        yield sanitize(change["state"])
        except httpx.TransportError as exc:
            raise NetworkUnavailable(str(exc) or "Live state stream interrupted") from exc

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def list_sessions(self) -> List[SavedSession]:
        payload = await self._request("GET", "/api/sessions", **self._scoped())
        return [SavedSession.model_validate(entry) for entry in payload.get("sessions", [])]

    async def create_session(self, session: SessionPayload) -> SavedSession:
        body = session.model_dump(by_alias=True)
        payload = await self._request("POST", "/api/sessions", **self._scoped(json=body))
        return SavedSession.model_validate(payload["session"])

    async def delete_session(self, session_id: str) -> None:
        access = self._require_authenticated()
        await self._request(
            "DELETE",
            f"/api/sessions/{session_id}",
            params={"leagueId": access.league.id},
            headers=access.headers(),
        )

    # ------------------------------------------------------------------
    # Scoring (admin)
    # ------------------------------------------------------------------

    async def get_scoring_config(self) -> ScoringConfig:
        access = self._require_authenticated()
        payload = await self._request(
            "GET", f"/api/leagues/{access.league.id}/scoring", headers=access.headers()
        )
        return ScoringConfig.model_validate(payload)

    async def put_scoring_config(self, config: ScoringConfig) -> ScoringConfig:
        access = self._require_authenticated()
        payload = await self._request(
            "PUT",
            f"/api/leagues/{access.league.id}/scoring",
            json=config.model_dump(by_alias=True),
            headers=access.headers(),
        )
        return ScoringConfig.model_validate(payload)
