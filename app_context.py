from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import httpx

import live_state
from api_client import LeagueAccess, LeagueApiClient
from live_sync import LiveStateSynchronizer
from logger import get_logger
from recorder import RecordResult, SessionRecorder
from settings import Settings, load_settings

log = get_logger("app_context")


@dataclass
class AppContext:
    """
    Everything a client needs for one league, built at sign-in (or when a
    share link is opened) and torn down at sign-out.
    """

    settings: Settings
    access: LeagueAccess
    api: LeagueApiClient
    sync: LiveStateSynchronizer
    recorder: SessionRecorder

    @classmethod
    async def open(
        cls,
        access: LeagueAccess,
        settings: Optional[Settings] = None,
        *,
        online: bool = True,
        http_client: Optional[httpx.AsyncClient] = None,
        subscribe: bool = True,
    ) -> "AppContext":
        settings = settings or load_settings()
        api = LeagueApiClient(
            settings.api_url,
            access,
            timeout=settings.request_timeout,
            client=http_client,
        )
        sync = LiveStateSynchronizer(
            api,
            online=online,
            request_timeout=settings.request_timeout,
            tick_seconds=settings.tick_seconds,
        )
        recorder = SessionRecorder(
            api,
            access.league.scoring_config(),
            online=online,
            request_timeout=settings.request_timeout,
        )
        context = cls(settings=settings, access=access, api=api, sync=sync, recorder=recorder)

        sync.start(subscribe=subscribe)
        try:
            if online:
                await sync.refresh()
                await recorder.refresh_history()
        except Exception:
            await context.close()
            raise

        log.info(f"Opened league {access.league.id} as client {sync.client_id}")
        return context

    async def set_online(self, online: bool) -> Optional[RecordResult]:
        self.sync.set_online(online)
        return await self.recorder.set_online(online)

    async def end_game(self) -> RecordResult:
        """Freeze the live game in summary and record it as a session."""
        state = self.sync.apply(live_state.end_game)
        return await self.recorder.submit(state.game_players, state.goal_events, state.team_names)

    async def close(self) -> None:
        await self.sync.close()
        await self.api.close()
        log.info(f"Closed league {self.access.league.id}")
