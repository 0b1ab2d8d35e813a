import copy
import unittest
from dataclasses import replace
from datetime import datetime, timedelta

from application.sessions import SessionLifecycleManager
from application.staking import new_stake_configuration
from domain.errors import NotFoundError, StateError, ValidationError
from domain.models import ParkedKey, SessionPhase
from tests.fakes import (
    T0,
    FakeClock,
    InMemoryLiveSessionRepository,
    InMemoryParkedSessionRepository,
    InMemoryStakeRepository,
)


class LifecycleTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = FakeClock()
        self.session_repo = InMemoryLiveSessionRepository()
        self.parked_repo = InMemoryParkedSessionRepository()
        self.stake_repo = InMemoryStakeRepository()
        self.manager = self.make_manager()

    def make_manager(self, user_id: str = "telegram:1") -> SessionLifecycleManager:
        return SessionLifecycleManager(
            user_id,
            self.session_repo,
            self.parked_repo,
            self.stake_repo,
            clock=self.clock,
        )

    def start(self, **kwargs):
        args = dict(game_name="Wynn", stakes_label="$2/$5", buy_in=500)
        args.update(kwargs)
        return self.manager.start(**args)


class StartPauseResumeTests(LifecycleTestCase):
    def test_start_creates_active_session_and_persists_it(self):
        result = self.start()
        session = result.session

        self.assertTrue(result.synced)
        self.assertEqual(session.phase, SessionPhase.ACTIVE)
        self.assertEqual(session.start_time, T0)
        self.assertEqual(session.last_active_at, T0)
        self.assertEqual(session.elapsed_seconds, 0)
        self.assertEqual(session.current_day, 1)
        self.assertEqual(self.session_repo.current["telegram:1"].id, session.id)

    def test_start_tournament_uses_tournament_name(self):
        session = self.start(is_tournament=True, tournament_name="WSOP Main").session
        self.assertEqual(session.game_name, "WSOP Main")
        self.assertEqual(session.title, "WSOP Main")

    def test_start_rejects_negative_buy_in(self):
        with self.assertRaises(ValidationError) as ctx:
            self.start(buy_in=-1)
        self.assertEqual(ctx.exception.field, "buy_in")
        self.assertIsNone(self.manager.session)

    def test_start_while_paused_is_rejected(self):
        self.start()
        self.manager.pause()
        with self.assertRaises(StateError):
            self.start(game_name="Bellagio")

    def test_repeated_start_while_active_is_a_no_op(self):
        first = self.start().session
        second = self.start().session
        self.assertIs(first, second)

    def test_repeated_start_with_a_different_buy_in_is_rejected(self):
        session = self.start(buy_in=200).session
        with self.assertRaises(StateError):
            self.start(buy_in=300)
        self.assertEqual(session.buy_in, 200)
        self.assertIs(self.start(buy_in=200).session, session)

    def test_elapsed_is_computed_from_timestamps(self):
        self.start()
        self.clock.advance(90)
        self.assertEqual(self.manager.elapsed(), 90)
        # Reading does not mutate the folded total.
        self.assertEqual(self.manager.session.elapsed_seconds, 0)

    def test_pause_folds_live_delta(self):
        self.start()
        self.clock.advance(120)
        session = self.manager.pause().session

        self.assertEqual(session.phase, SessionPhase.PAUSED)
        self.assertEqual(session.elapsed_seconds, 120)
        self.assertIsNone(session.last_active_at)
        self.assertEqual(session.last_paused_at, self.clock.current)

        self.clock.advance(hours=5)
        self.assertEqual(self.manager.elapsed(), 120)

    def test_pause_twice_is_idempotent(self):
        self.start()
        self.clock.advance(60)
        self.manager.pause()
        self.clock.advance(60)
        session = self.manager.pause().session
        self.assertEqual(session.elapsed_seconds, 60)
        self.assertEqual(session.phase, SessionPhase.PAUSED)

    def test_resume_resets_reference_point_only(self):
        self.start()
        self.clock.advance(100)
        self.manager.pause()
        self.clock.advance(1000)
        session = self.manager.resume().session

        self.assertEqual(session.phase, SessionPhase.ACTIVE)
        self.assertEqual(session.elapsed_seconds, 100)
        self.assertEqual(session.last_active_at, self.clock.current)

    def test_resume_while_active_is_a_no_op(self):
        self.start()
        self.clock.advance(30)
        session = self.manager.resume().session
        self.assertEqual(session.last_active_at, T0)

    def test_elapsed_equals_sum_of_active_intervals(self):
        self.start()
        active = [300, 45, 1200, 7]
        paused = [10, 7200, 0, 86400]
        for run, rest in zip(active, paused):
            self.clock.advance(run)
            self.manager.pause()
            self.clock.advance(rest)
            self.manager.resume()
        self.manager.pause()

        self.assertEqual(self.manager.session.elapsed_seconds, sum(active))

    def test_rebuy_adds_to_buy_in(self):
        self.start(buy_in=200)
        self.manager.add_rebuy(100)
        self.manager.pause()
        session = self.manager.add_rebuy(50).session

        self.assertEqual(session.buy_in, 350)
        self.assertEqual(session.rebuys, [100, 50])
        self.assertEqual(session.initial_buy_in, 200)

    def test_rebuy_must_be_positive(self):
        self.start()
        with self.assertRaises(ValidationError):
            self.manager.add_rebuy(0)
        self.assertEqual(self.manager.session.buy_in, 500)


class InvalidTransitionTests(LifecycleTestCase):
    def test_commands_without_a_session_are_rejected(self):
        for command in (self.manager.pause, self.manager.resume, self.manager.discard_session):
            with self.assertRaises(StateError):
                command()
        with self.assertRaises(StateError):
            self.manager.end(100)
        with self.assertRaises(StateError):
            self.manager.park_for_next_day(T0 + timedelta(days=1))

    def test_resume_on_completed_session_leaves_it_unchanged(self):
        self.start()
        self.clock.advance(600)
        self.manager.end(800)
        before = copy.deepcopy(self.manager.session)

        self.clock.advance(600)
        with self.assertRaises(StateError):
            self.manager.resume()
        with self.assertRaises(StateError):
            self.manager.pause()
        self.assertEqual(self.manager.session, before)

    def test_resume_on_discarded_session_leaves_it_unchanged(self):
        self.start()
        self.clock.advance(600)
        self.manager.discard_session()
        before = copy.deepcopy(self.manager.session)

        with self.assertRaises(StateError):
            self.manager.resume()
        self.assertEqual(self.manager.session, before)
        self.assertEqual(self.manager.session.phase, SessionPhase.DISCARDED)
        self.assertNotIn("telegram:1", self.session_repo.current)

    def test_new_session_can_start_after_completion(self):
        first = self.start().session
        self.manager.end(0)
        second = self.start(game_name="Aria").session
        self.assertNotEqual(first.id, second.id)
        self.assertEqual(second.phase, SessionPhase.ACTIVE)


class ParkingTests(LifecycleTestCase):
    def test_park_moves_session_into_registry(self):
        self.start(is_tournament=True, tournament_name="Main Event")
        self.clock.advance(hours=8)
        tomorrow = self.clock.current + timedelta(hours=16)
        result = self.manager.park_for_next_day(tomorrow)

        session = result.session
        self.assertEqual(result.parked_key, ParkedKey(session.id, 2))
        self.assertEqual(session.phase, SessionPhase.PARKED_FOR_NEXT_DAY)
        self.assertTrue(session.paused_for_next_day)
        self.assertEqual(session.paused_for_next_day_date, tomorrow)
        self.assertEqual(session.elapsed_seconds, 8 * 3600)
        self.assertIsNone(self.manager.session)
        self.assertEqual(self.manager.phase, SessionPhase.NOT_STARTED)
        self.assertIn(result.parked_key, self.manager.registry)
        self.assertIn(result.parked_key, self.parked_repo.entries)
        self.assertNotIn("telegram:1", self.session_repo.current)

    def test_park_then_restore_preserves_elapsed_and_increments_day(self):
        self.start(is_tournament=True, tournament_name="Main Event")
        self.clock.advance(hours=6)
        key = self.manager.park_for_next_day(self.clock.current + timedelta(days=1)).parked_key

        self.clock.advance(days=1)
        session = self.manager.restore_parked_session(str(key)).session

        self.assertEqual(session.phase, SessionPhase.ACTIVE)
        self.assertEqual(session.elapsed_seconds, 6 * 3600)
        self.assertEqual(session.current_day, 2)
        self.assertFalse(session.paused_for_next_day)
        self.assertIsNone(session.paused_for_next_day_date)
        self.assertEqual(session.last_active_at, self.clock.current)
        self.assertNotIn(key, self.manager.registry)
        self.assertNotIn(key, self.parked_repo.entries)
        self.assertIs(self.manager.session, session)

    def test_parking_twice_is_rejected(self):
        self.start(is_tournament=True)
        self.manager.park_for_next_day(T0 + timedelta(days=1))
        with self.assertRaises(StateError):
            self.manager.park_for_next_day(T0 + timedelta(days=2))
        self.assertEqual(len(self.manager.registry), 1)

    def test_park_from_paused(self):
        self.start()
        self.clock.advance(50)
        self.manager.pause()
        self.clock.advance(500)
        session = self.manager.park_for_next_day(T0 + timedelta(days=1)).session
        self.assertEqual(session.elapsed_seconds, 50)

    def test_restore_with_session_in_progress_is_rejected(self):
        self.start(is_tournament=True)
        key = self.manager.park_for_next_day(T0 + timedelta(days=1)).parked_key
        self.start(game_name="Cash game")

        with self.assertRaises(StateError):
            self.manager.restore_parked_session(key)
        self.assertIn(key, self.manager.registry)

    def test_restore_unknown_key(self):
        with self.assertRaises(NotFoundError):
            self.manager.restore_parked_session("missing_day2")
        with self.assertRaises(NotFoundError):
            self.manager.restore_parked_session("not-a-key")

    def test_discard_parked_session(self):
        self.start(is_tournament=True)
        key = self.manager.park_for_next_day(T0 + timedelta(days=1)).parked_key

        session = self.manager.discard_parked_session(key).session
        self.assertEqual(session.phase, SessionPhase.DISCARDED)
        self.assertNotIn(key, self.manager.registry)
        self.assertNotIn(key, self.parked_repo.entries)

        # Repeating the discard is a no-op; restoring it is not allowed.
        self.manager.discard_parked_session(key)
        with self.assertRaises(StateError):
            self.manager.restore_parked_session(key)

    def test_multiple_parked_sessions_are_listed_by_date(self):
        self.start(is_tournament=True, tournament_name="Late")
        late_key = self.manager.park_for_next_day(T0 + timedelta(days=3)).parked_key
        self.start(game_name="Bellagio", stakes_label="$1/$3")
        self.manager.park_for_next_day(T0 - timedelta(days=1))

        infos = self.manager.list_parked_sessions()
        self.assertEqual([i.display_name for i in infos], ["$1/$3 @ Bellagio - Day 2", "Late - Day 2"])
        self.assertEqual([i.overdue for i in infos], [True, False])
        self.assertEqual(infos[1].key, late_key)

    def test_stakes_are_not_carried_across_parking(self):
        self.start(is_tournament=True)
        self.manager.attach_stake(new_stake_configuration(10, staker_name="Sam"))
        self.manager.park_for_next_day(T0 + timedelta(days=1))
        self.assertEqual(self.manager.attached_stakes, [])

    def test_park_rejects_date_without_timezone(self):
        self.start(is_tournament=True)
        with self.assertRaises(ValidationError) as ctx:
            self.manager.park_for_next_day(datetime(2024, 6, 2, 12, 0))
        self.assertEqual(ctx.exception.field, "scheduled_date")
        self.assertEqual(self.manager.phase, SessionPhase.ACTIVE)
        self.assertEqual(len(self.manager.registry), 0)
        self.assertEqual(self.manager.list_parked_sessions(), [])

    def test_failed_park_write_keeps_stored_current_session(self):
        session = self.start(is_tournament=True).session
        self.parked_repo.failing.add("put_parked")
        result = self.manager.park_for_next_day(T0 + timedelta(days=1))

        self.assertFalse(result.synced)
        self.assertEqual(self.manager.pending_writes, [f"parked:{result.parked_key}", "current"])
        self.assertEqual(self.session_repo.current["telegram:1"].id, session.id)
        self.assertNotIn(result.parked_key, self.parked_repo.entries)

        self.parked_repo.failing.clear()
        self.assertIsNone(self.manager.flush_pending_writes())
        self.assertIn(result.parked_key, self.parked_repo.entries)
        self.assertNotIn("telegram:1", self.session_repo.current)

    def test_failed_restore_write_keeps_parked_copy(self):
        self.start(is_tournament=True)
        key = self.manager.park_for_next_day(T0 + timedelta(days=1)).parked_key
        self.session_repo.failing.add("save")
        result = self.manager.restore_parked_session(key)

        self.assertFalse(result.synced)
        self.assertEqual(self.manager.pending_writes, ["current", f"parked:{key}"])
        self.assertIn(key, self.parked_repo.entries)

        self.session_repo.failing.clear()
        self.assertIsNone(self.manager.flush_pending_writes())
        self.assertNotIn(key, self.parked_repo.entries)
        self.assertEqual(self.session_repo.current["telegram:1"].current_day, 2)


class EndSessionTests(LifecycleTestCase):
    def test_end_settles_attached_and_passed_configurations(self):
        self.start(buy_in=200)
        self.manager.attach_stake(new_stake_configuration(50, 1.0, staker_name="Alice"))
        self.clock.advance(hours=2)
        extra = new_stake_configuration(25, 1.2, app_user_id="telegram:2")

        result = self.manager.end(500, [extra])

        self.assertTrue(result.synced)
        self.assertEqual(result.session.phase, SessionPhase.COMPLETED)
        self.assertEqual(result.finished.elapsed_seconds, 7200)
        self.assertEqual(result.finished.profit, 300)
        by_pct = {s.stake_percentage: s for s in result.stakes}
        self.assertAlmostEqual(by_pct[50].staker_cost, 100)
        self.assertAlmostEqual(by_pct[50].amount_transferred_at_settlement, 150)
        self.assertAlmostEqual(by_pct[25].staker_cost, 60)
        self.assertAlmostEqual(by_pct[25].amount_transferred_at_settlement, 65)
        self.assertAlmostEqual(result.finished.adjusted_profit, 300 - 150 - 65)

        self.assertEqual(len(self.stake_repo.list_stakes(result.session.id)), 2)
        self.assertIn(result.session.id, self.session_repo.finished)
        self.assertNotIn("telegram:1", self.session_repo.current)

    def test_end_uses_post_rebuy_buy_in(self):
        self.start(buy_in=1000)
        self.manager.add_rebuy(0.5)
        stakes = self.manager.end(800, [new_stake_configuration(10, staker_name="Bo")]).stakes
        self.assertEqual(stakes[0].total_player_buy_in_for_session, 1000.5)

    def test_invalid_configuration_rejects_end_without_mutation(self):
        self.start()
        self.clock.advance(60)
        bad = replace(new_stake_configuration(10, staker_name="Ok"), markup=0.5)

        with self.assertRaises(ValidationError) as ctx:
            self.manager.end(100, [bad])
        self.assertEqual(ctx.exception.field, "markup")
        self.assertEqual(self.manager.phase, SessionPhase.ACTIVE)
        self.assertEqual(self.manager.session.elapsed_seconds, 0)
        self.assertEqual(self.stake_repo.stakes, {})

    def test_end_from_paused(self):
        self.start()
        self.clock.advance(100)
        self.manager.pause()
        self.clock.advance(100)
        result = self.manager.end(0)
        self.assertEqual(result.finished.elapsed_seconds, 100)

    def test_restored_multi_day_session_reports_days_played(self):
        self.start(is_tournament=True, tournament_name="Main")
        key = self.manager.park_for_next_day(T0 + timedelta(days=1)).parked_key
        self.manager.restore_parked_session(key)
        self.assertEqual(self.manager.end(5000).finished.days_played, 2)

    def test_ending_twice_after_persistence_failure_creates_one_stake_per_configuration(self):
        self.start(buy_in=200)
        configs = [
            new_stake_configuration(50, staker_name="Alice"),
            new_stake_configuration(20, 1.1, staker_name="Bob"),
        ]
        self.session_repo.failing.add("archive")
        first = self.manager.end(500, configs)

        self.assertFalse(first.synced)
        self.assertEqual(self.manager.phase, SessionPhase.COMPLETED)
        self.assertIn(f"archive:{first.session.id}", self.manager.pending_writes)
        # The stored slot is only cleared once the archive is saved.
        self.assertIn("telegram:1", self.session_repo.current)

        self.session_repo.failing.clear()
        second = self.manager.end(500, configs)

        self.assertTrue(second.synced)
        self.assertEqual([s.id for s in second.stakes], [s.id for s in first.stakes])
        self.assertEqual(len(self.stake_repo.list_stakes(first.session.id)), 2)
        self.assertIn(first.session.id, self.session_repo.finished)
        self.assertEqual(self.manager.pending_writes, [])

    def test_stake_write_failure_is_retried_without_duplicates(self):
        self.start(buy_in=100)
        self.stake_repo.failing.add("save_stake")
        result = self.manager.end(300, [new_stake_configuration(50, staker_name="Alice")])
        self.assertFalse(result.synced)
        self.assertEqual(self.stake_repo.stakes, {})

        self.stake_repo.failing.clear()
        self.assertIsNone(self.manager.flush_pending_writes())
        self.manager.end(300)
        self.assertEqual(len(self.stake_repo.stakes), 1)


class PersistenceFailureTests(LifecycleTestCase):
    def test_failed_write_keeps_transition_and_reports_error(self):
        self.start()
        self.session_repo.failing.add("save")
        self.clock.advance(30)
        result = self.manager.pause()

        self.assertFalse(result.synced)
        self.assertEqual(self.manager.phase, SessionPhase.PAUSED)
        self.assertEqual(self.manager.pending_writes, ["current"])

        self.assertIsNotNone(self.manager.flush_pending_writes())
        self.session_repo.failing.clear()
        self.assertIsNone(self.manager.flush_pending_writes())
        self.assertEqual(self.session_repo.current["telegram:1"].phase, SessionPhase.PAUSED)

    def test_later_write_supersedes_queued_one(self):
        self.start()
        self.session_repo.failing.add("save")
        self.manager.pause()
        self.manager.resume()
        self.assertEqual(self.manager.pending_writes, ["current"])

        self.session_repo.failing.clear()
        self.manager.flush_pending_writes()
        self.assertEqual(self.session_repo.current["telegram:1"].phase, SessionPhase.ACTIVE)


class LoadCurrentTests(LifecycleTestCase):
    def test_load_restores_running_session_and_parked_entries(self):
        self.start(is_tournament=True, tournament_name="Main")
        key = self.manager.park_for_next_day(T0 + timedelta(days=1)).parked_key
        self.start(game_name="Aria")
        self.clock.advance(45)

        fresh = self.make_manager()
        fresh.load_current()

        self.assertEqual(fresh.session.game_name, "Aria")
        self.assertEqual(fresh.elapsed(), 45)
        self.assertIn(key, fresh.registry)

    def test_stale_session_is_discarded_on_load(self):
        self.start()
        self.clock.advance(hours=121)

        fresh = self.make_manager()
        result = fresh.load_current()

        self.assertEqual(result.session.phase, SessionPhase.DISCARDED)
        self.assertNotIn("telegram:1", self.session_repo.current)
        with self.assertRaises(StateError):
            fresh.resume()


if __name__ == "__main__":
    unittest.main()
