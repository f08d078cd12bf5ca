import unittest

import httpx

import live_state
from api_client import AccountClient, AuthenticatedAccess, LeagueApiClient, PublicAccess
from app_context import AppContext
from errors import Forbidden, NotFound, Unauthorized
from main import create_app
from schemas import LeagueSummary, ScoringConfig
from settings import Settings
from store import LeagueStore

BASE_URL = "http://testserver"


class ClientTestCase(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.store = LeagueStore()
        self.admin_token = self.store.issue_token("admin-user")
        self.member_token = self.store.issue_token("member-user")
        app = create_app(store=self.store, settings=Settings())
        self.http = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url=BASE_URL)

        account = AccountClient(BASE_URL, self.admin_token, client=self.http)
        self.league = await account.create_league("Tuesday Floorball")
        self.store.add_member(self.league.id, "member-user")

    async def asyncTearDown(self) -> None:
        await self.http.aclose()

    def _api(self, access) -> LeagueApiClient:
        return LeagueApiClient(BASE_URL, access, client=self.http)

    def _admin(self) -> AuthenticatedAccess:
        return AuthenticatedAccess(league=self.league, access_token=self.admin_token)

    def _public(self) -> PublicAccess:
        summary = LeagueSummary.model_validate(self.league.model_dump(exclude={"role"}))
        return PublicAccess(league=summary)


class TestLeagueApiClient(ClientTestCase):
    async def test_account_calls(self) -> None:
        account = AccountClient(BASE_URL, self.admin_token, client=self.http)
        leagues = await account.list_leagues()
        self.assertEqual([(l.id, l.role) for l in leagues], [(self.league.id, "admin")])

        summary = await account.resolve_public_league(self.league.public_token)
        self.assertEqual(summary.name, "Tuesday Floorball")

        with self.assertRaises(NotFound):
            await account.resolve_public_league("not-a-token")

    async def test_bad_credentials_map_to_unauthorized(self) -> None:
        with self.assertRaises(Unauthorized):
            await AccountClient(BASE_URL, "forged", client=self.http).list_leagues()

    async def test_roster_through_share_link(self) -> None:
        api = self._api(self._public())
        ana = await api.add_player("Ana")
        await api.rename_player(ana.id, "Anna")

        players = await self._api(self._admin()).list_players()
        self.assertEqual([p.name for p in players], ["Anna"])

        await api.delete_player(ana.id)
        self.assertEqual(await api.list_players(), [])

    async def test_live_state_round_trip(self) -> None:
        api = self._api(self._public())
        state = live_state.toggle_selection(live_state.reset(), "p1")

        await api.put_live_state(state)
        fetched = await self._api(self._admin()).fetch_live_state()

        self.assertEqual(fetched, state)

    async def test_admin_only_calls(self) -> None:
        admin = self._api(self._admin())
        updated = await admin.put_scoring_config(ScoringConfig(goal_points=2, enable_assists=True))
        self.assertEqual(updated.goal_points, 2)
        self.assertTrue((await admin.get_scoring_config()).enable_assists)

        with self.assertRaises(Forbidden):
            await self._api(self._public()).get_scoring_config()

        member_league = self.league.model_copy(update={"role": "member"})
        member = self._api(AuthenticatedAccess(league=member_league, access_token=self.member_token))
        with self.assertRaises(Forbidden):
            await member.put_scoring_config(ScoringConfig())


class TestAppContext(ClientTestCase):
    async def test_full_game_is_recorded(self) -> None:
        api = self._api(self._admin())
        roster = [await api.add_player("Ana"), await api.add_player("Ben")]

        context = await AppContext.open(
            self._admin(), Settings(tick_seconds=3600), http_client=self.http, subscribe=False
        )
        try:
            sync = context.sync
            for player in roster:
                sync.apply(live_state.toggle_selection, player.id)
            sync.apply(live_state.toggle_team, roster[1].id)
            sync.apply(live_state.start_game, roster)
            sync.apply(live_state.adjust_goal, roster[0].id, 2)
            sync.apply(live_state.adjust_goal, roster[1].id, 1)

            result = await context.end_game()
            await sync.settle()
        finally:
            await context.close()

        self.assertEqual(result.status, "saved")
        self.assertEqual(result.session.winner, "A")
        self.assertEqual(len(result.session.goal_events), 3)

        stored = self.store.get_live_state(self.league.id)
        self.assertEqual(stored.stage, "summary")

        sessions = self.store.list_sessions(self.league.id)
        self.assertEqual([s.id for s in sessions], [result.session.id])
        self.assertEqual([e.name for e in context.recorder.leaderboard], ["Ana", "Ben"])
        self.assertEqual(context.recorder.leaderboard[0].points, 1 + 2 + 5)

    async def test_share_link_cannot_delete_sessions(self) -> None:
        context = await AppContext.open(
            self._public(), Settings(tick_seconds=3600), http_client=self.http, subscribe=False
        )
        try:
            with self.assertRaises(Forbidden):
                await context.recorder.delete_session("session_x")
        finally:
            await context.close()


if __name__ == "__main__":
    unittest.main()
