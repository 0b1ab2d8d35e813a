import unittest
from datetime import timedelta

from application.registry import MultiDaySessionRegistry
from domain.models import LiveSession, ParkedKey, ParkedSessionEntry, SessionPhase
from tests.fakes import T0


def parked_entry(session_id: str, user_id: str, scheduled, day: int = 2, **kwargs) -> ParkedSessionEntry:
    fields = dict(
        id=session_id,
        user_id=user_id,
        game_name="Venetian",
        stakes_label="$1/$3",
        buy_in=300,
        start_time=T0,
        phase=SessionPhase.PARKED_FOR_NEXT_DAY,
        current_day=day - 1,
        paused_for_next_day=True,
        paused_for_next_day_date=scheduled,
    )
    fields.update(kwargs)
    return ParkedSessionEntry(
        key=ParkedKey(session_id, day),
        user_id=user_id,
        session=LiveSession(**fields),
    )


class MultiDaySessionRegistryTests(unittest.TestCase):
    def setUp(self) -> None:
        self.registry = MultiDaySessionRegistry()

    def test_list_is_sorted_by_scheduled_date_and_scoped_to_user(self):
        self.registry.put(parked_entry("b", "u1", T0 + timedelta(days=2)))
        self.registry.put(parked_entry("a", "u1", T0 + timedelta(days=1)))
        self.registry.put(parked_entry("c", "u2", T0))

        self.assertEqual([e.key.session_id for e in self.registry.list("u1")], ["a", "b"])
        self.assertEqual(len(self.registry), 3)

    def test_describe_flags_overdue_without_discarding(self):
        self.registry.put(parked_entry("old", "u1", T0 - timedelta(hours=1)))
        self.registry.put(
            parked_entry("new", "u1", T0 + timedelta(hours=1), is_tournament=True, tournament_name="Main Event", day=3)
        )

        infos = self.registry.describe("u1", T0)
        self.assertEqual([i.overdue for i in infos], [True, False])
        self.assertEqual(infos[0].display_name, "$1/$3 @ Venetian - Day 2")
        self.assertEqual(infos[1].display_name, "Main Event - Day 3")
        self.assertIn("old_day2", self.registry)

    def test_lookup_accepts_string_keys(self):
        entry = parked_entry("abc-123", "u1", T0)
        self.registry.put(entry)
        self.assertIs(self.registry.get("abc-123_day2"), entry)
        self.assertIsNone(self.registry.get("abc-123_day3"))

    def test_discarded_keys_are_remembered_and_not_reloaded(self):
        entry = parked_entry("x", "u1", T0)
        self.registry.put(entry)
        self.registry.mark_discarded(entry.key)

        self.assertNotIn(entry.key, self.registry)
        self.assertTrue(self.registry.was_discarded("x_day2"))

        self.registry.load([parked_entry("x", "u1", T0)])
        self.assertNotIn(entry.key, self.registry)

    def test_discarded_keys_are_remembered_per_owner(self):
        entry = parked_entry("x", "u1", T0)
        self.registry.put(entry)
        self.registry.mark_discarded(entry.key)

        self.assertTrue(self.registry.was_discarded("x_day2", "u1"))
        self.assertFalse(self.registry.was_discarded("x_day2", "u2"))

    def test_drop_user_forgets_only_that_user(self):
        self.registry.put(parked_entry("a", "u1", T0))
        self.registry.put(parked_entry("b", "u2", T0))
        self.registry.drop_user("u1")

        self.assertEqual(self.registry.list("u1"), [])
        self.assertEqual(len(self.registry.list("u2")), 1)


class ParkedKeyTests(unittest.TestCase):
    def test_round_trips_through_string_form(self):
        key = ParkedKey("5d1c_day_x", 4)
        self.assertEqual(str(key), "5d1c_day_x_day4")
        self.assertEqual(ParkedKey.parse(str(key)), key)

    def test_rejects_malformed_keys(self):
        for raw in ("", "abc", "abc_day", "abc_dayX", "_day2"):
            with self.assertRaises(ValueError):
                ParkedKey.parse(raw)


if __name__ == "__main__":
    unittest.main()
