import asyncio
import unittest

import live_state
from errors import Forbidden, NetworkUnavailable
from live_sync import LiveStateSynchronizer
from schemas import LiveGameState, Player


class FakeRemote:
    def __init__(self) -> None:
        self.puts = []
        self.fail_with = None
        self.remote_state = None
        self.feed: asyncio.Queue = asyncio.Queue()

    async def put_live_state(self, state):
        if self.fail_with is not None:
            raise self.fail_with
        self.puts.append(state)
        return state

    async def fetch_live_state(self):
        if self.fail_with is not None:
            raise self.fail_with
        return self.remote_state

    async def subscribe_live_state(self):
        while True:
            yield await self.feed.get()


def _state(last_updated: int, **fields) -> LiveGameState:
    return LiveGameState(last_updated=last_updated, **fields)


class TestMergeRemote(unittest.IsolatedAsyncioTestCase):
    async def test_stale_remote_state_is_discarded(self) -> None:
        sync = LiveStateSynchronizer(FakeRemote(), initial=_state(100, stage="game"))

        accepted = sync.merge_remote(_state(50, stage="summary"))

        self.assertFalse(accepted)
        self.assertEqual(sync.state.stage, "game")
        self.assertEqual(sync.state.last_updated, 100)

    async def test_newer_remote_state_replaces_local(self) -> None:
        sync = LiveStateSynchronizer(FakeRemote(), initial=_state(100))
        incoming = _state(150, stage="setup", selected_player_ids=["p1"])

        self.assertTrue(sync.merge_remote(incoming))
        self.assertEqual(sync.state.stage, "setup")

        incoming.selected_player_ids.append("p2")
        self.assertEqual(sync.state.selected_player_ids, ["p1"])

    async def test_equal_timestamp_is_accepted(self) -> None:
        sync = LiveStateSynchronizer(FakeRemote(), initial=_state(100))
        self.assertTrue(sync.merge_remote(_state(100, stage="setup")))

    async def test_raw_payloads_are_sanitized(self) -> None:
        sync = LiveStateSynchronizer(FakeRemote(), initial=_state(1))
        sync.merge_remote({"stage": "bogus", "lastUpdated": 5, "gamePlayers": "nope"})
        self.assertEqual(sync.state.stage, "roster")
        self.assertEqual(sync.state.last_updated, 5)

    async def test_accepted_remote_drops_older_pending_write(self) -> None:
        sync = LiveStateSynchronizer(FakeRemote(), online=False, initial=_state(100))
        sync.apply(live_state.go_to_setup)
        pending_stamp = sync.pending.last_updated

        sync.merge_remote(_state(pending_stamp + 1000, stage="game"))

        self.assertIsNone(sync.pending)
        self.assertEqual(sync.state.stage, "game")

    async def test_refresh_merges_fetched_state(self) -> None:
        remote = FakeRemote()
        remote.remote_state = _state(10, stage="setup")
        sync = LiveStateSynchronizer(remote)

        self.assertTrue(await sync.refresh())
        self.assertEqual(sync.state.stage, "setup")

    async def test_refresh_failure_keeps_local_state(self) -> None:
        remote = FakeRemote()
        remote.fail_with = NetworkUnavailable("down")
        sync = LiveStateSynchronizer(remote, initial=_state(10, stage="game"))

        self.assertFalse(await sync.refresh())
        self.assertEqual(sync.state.stage, "game")
        self.assertIsNotNone(sync.status)


class TestPersistence(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.remote = FakeRemote()

    async def asyncTearDown(self) -> None:
        for sync in getattr(self, "_syncs", []):
            await sync.close()

    def _start(self, **kwargs) -> LiveStateSynchronizer:
        sync = LiveStateSynchronizer(self.remote, tick_seconds=3600, **kwargs)
        sync.start(subscribe=False)
        self._syncs = getattr(self, "_syncs", []) + [sync]
        return sync

    async def test_local_mutation_is_applied_and_sent(self) -> None:
        sync = self._start()

        state = sync.apply(live_state.toggle_selection, "p1")
        self.assertEqual(sync.state.selected_player_ids, ["p1"])

        await sync.settle()
        self.assertEqual(self.remote.puts, [state])
        self.assertIsNone(sync.pending)

    async def test_offline_queue_keeps_only_latest_snapshot(self) -> None:
        sync = self._start(online=False)

        sync.apply(live_state.toggle_selection, "p1")
        latest = sync.apply(live_state.toggle_selection, "p2")
        await sync.settle()

        self.assertEqual(self.remote.puts, [])
        self.assertEqual(sync.pending, latest)

        sync.set_online(True)
        await sync.settle()

        self.assertEqual(self.remote.puts, [latest])
        self.assertIsNone(sync.pending)

    async def test_going_offline_keeps_queued_write(self) -> None:
        sync = self._start()
        sync.set_online(False)
        state = sync.apply(live_state.go_to_setup)
        await sync.settle()

        self.assertEqual(self.remote.puts, [])
        self.assertEqual(sync.pending, state)
        self.assertFalse(sync.online)

    async def test_failed_send_is_requeued(self) -> None:
        sync = self._start()
        self.remote.fail_with = NetworkUnavailable("connection reset")

        state = sync.apply(live_state.go_to_setup)
        await sync.settle()

        self.assertEqual(sync.pending, state)
        self.assertEqual(sync.status, "Live game changes pending sync")

        self.remote.fail_with = None
        sync.set_online(True)
        await sync.settle()
        self.assertEqual(self.remote.puts, [state])
        self.assertIsNone(sync.status)

    async def test_slow_remote_times_out_into_retry(self) -> None:
        class SlowRemote(FakeRemote):
            async def put_live_state(self, state):
                await asyncio.sleep(5)

        self.remote = SlowRemote()
        sync = self._start(request_timeout=0.01)

        state = sync.apply(live_state.go_to_setup)
        await sync.settle()

        self.assertEqual(sync.pending, state)
        self.assertIsInstance(sync.last_error, NetworkUnavailable)

    async def test_authorization_failure_is_terminal(self) -> None:
        sync = self._start()
        self.remote.fail_with = Forbidden("Forbidden")

        sync.apply(live_state.go_to_setup)
        await sync.settle()

        self.assertIsNone(sync.pending)
        self.assertIsInstance(sync.last_error, Forbidden)
        self.assertIn("refused", sync.status)

    async def test_pushed_changes_are_merged_in_order(self) -> None:
        sync = self._start(initial=_state(100))

        sync.receive_remote(_state(200, stage="setup"))
        sync.receive_remote(_state(150, stage="game"))
        await sync.settle()

        self.assertEqual(sync.state.stage, "setup")
        self.assertEqual(sync.state.last_updated, 200)

    async def test_subscription_feeds_remote_changes(self) -> None:
        sync = LiveStateSynchronizer(self.remote, tick_seconds=3600)
        sync.start()
        self._syncs = [sync]

        await self.remote.feed.put(_state(500, stage="summary"))
        for _ in range(50):
            if sync.state.stage == "summary":
                break
            await asyncio.sleep(0.01)

        self.assertEqual(sync.state.stage, "summary")

    async def test_closed_synchronizer_ignores_late_updates(self) -> None:
        sync = self._start(initial=_state(100, stage="game"))
        await sync.close()

        self.assertFalse(sync.merge_remote(_state(900, stage="roster")))
        self.assertEqual(sync.state.stage, "game")

    async def test_settle_after_close_returns_with_events_queued(self) -> None:
        # Never started, so the persist event stays queued.
        sync = LiveStateSynchronizer(self.remote)
        sync.apply(live_state.go_to_setup)
        await sync.close()

        await asyncio.wait_for(sync.settle(), timeout=1)
        self.assertEqual(self.remote.puts, [])


class TestClockOwnership(unittest.IsolatedAsyncioTestCase):
    async def test_owner_drives_clock(self) -> None:
        remote = FakeRemote()
        sync = LiveStateSynchronizer(remote, tick_seconds=0.01)
        sync.apply(live_state.start_game, [Player(id="p1", name="Ana")])
        sync.start(subscribe=False)
        try:
            sync.start_timer()
            self.assertTrue(sync.owns_clock)
            self.assertEqual(sync.state.timer_owner_id, sync.client_id)

            await asyncio.sleep(0.1)
            sync.pause_timer()
            await sync.settle()
        finally:
            await sync.close()

        self.assertGreaterEqual(sync.state.seconds_elapsed, 1)
        self.assertIsNone(sync.state.timer_owner_id)
        self.assertEqual(remote.puts[-1].seconds_elapsed, sync.state.seconds_elapsed)

    async def test_viewer_never_increments(self) -> None:
        remote = FakeRemote()
        running = live_state.start_timer(live_state.reset(), "someone-else")
        sync = LiveStateSynchronizer(remote, tick_seconds=0.01, initial=running)
        sync.start(subscribe=False)
        try:
            await asyncio.sleep(0.1)
            await sync.settle()
        finally:
            await sync.close()

        self.assertFalse(sync.owns_clock)
        self.assertEqual(sync.state.seconds_elapsed, 0)
        self.assertEqual(remote.puts, [])

    async def test_alarm_due_follows_clock(self) -> None:
        state = live_state.set_alarm(live_state.reset(), 0)
        sync = LiveStateSynchronizer(FakeRemote(), initial=state)
        self.assertTrue(sync.alarm_due)

        sync.apply(live_state.acknowledge_alarm)
        self.assertFalse(sync.alarm_due)


if __name__ == "__main__":
    unittest.main()
