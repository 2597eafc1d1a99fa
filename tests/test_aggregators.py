"""
Unit tests for the loot, build and raid batches and the death-loop suppressor.
"""

import datetime

import pytest

from gamelog_monitor.aggregators import BuildBatch, DeathLoopSuppressor, LootBatch, RaidBatch

from .conftest import utc_timestamp


@pytest.fixture
def flushed():
    return []


class TestLootBatch:
    def test_single_flush_after_delay(self, scheduler, flushed):
        batch = LootBatch(scheduler, 60, flushed.append)
        batch.add("Alice", "1", "2", "Cupboard")
        scheduler.advance(30)
        batch.add("Alice", "1", "2", "Cupboard")
        batch.add("Alice", "1", "2", "Fridge")
        batch.add("Bob", "3", "2", "Cupboard")
        assert flushed == []

        scheduler.advance(30)
        assert len(flushed) == 1
        alice, bob = flushed[0]
        assert alice.count == 3
        assert alice.containers == ["Cupboard", "Fridge"]
        assert bob.looter == "Bob"
        assert batch.entries == {}
        assert not batch.armed

    def test_self_loot_is_rejected(self, scheduler, flushed):
        batch = LootBatch(scheduler, 60, flushed.append)
        assert batch.add("Alice", "1", "1", "Cupboard") is False
        assert not batch.armed
        scheduler.advance(120)
        assert flushed == []

    def test_new_timer_after_flush(self, scheduler, flushed):
        batch = LootBatch(scheduler, 60, flushed.append)
        batch.add("Alice", "1", "2", "Cupboard")
        scheduler.advance(60)
        batch.add("Alice", "1", "2", "Cupboard")
        scheduler.advance(60)
        assert len(flushed) == 2

    def test_manual_flush_cancels_timer(self, scheduler, flushed):
        batch = LootBatch(scheduler, 60, flushed.append)
        batch.add("Alice", "1", "2", "Cupboard")
        batch.flush()
        scheduler.advance(60)
        assert len(flushed) == 1
        batch.flush()
        assert len(flushed) == 1


class TestBuildBatch:
    def test_counts_items_per_player(self, scheduler, flushed):
        batch = BuildBatch(scheduler, 60, flushed.append)
        batch.add("Alice", "1", "Wall Wood")
        batch.add("Alice", "1", "Wall Wood")
        batch.add("Alice", "1", "Campfire")
        scheduler.advance(60)

        (entry,) = flushed[0]
        assert entry.items == {"Wall Wood": 2, "Campfire": 1}


class TestRaidBatch:
    def test_destroyed_and_damaged(self, scheduler, flushed):
        batch = RaidBatch(scheduler, 60, flushed.append)
        batch.add("Raider", "1", "2", "Wall", destroyed=False)
        batch.add("Raider", "1", "2", "Wall", destroyed=True)
        batch.add("Raider", "1", "2", "Door", destroyed=True)
        scheduler.advance(60)

        (entry,) = flushed[0]
        assert entry.destroyed == 2
        assert entry.damaged == 1
        assert entry.buildings == {"Wall": 2, "Door": 1}

    def test_self_damage_is_rejected(self, scheduler, flushed):
        batch = RaidBatch(scheduler, 60, flushed.append)
        assert batch.add("Owner", "2", "2", "Wall", destroyed=True) is False
        assert batch.entries == {}


class TestDeathLoopSuppressor:
    WINDOW = datetime.timedelta(seconds=60)

    def make(self, scheduler, flushed, threshold=3):
        return DeathLoopSuppressor(scheduler, threshold, self.WINDOW, flushed.append)

    @pytest.mark.parametrize("deaths", [1, 2, 3, 4, 7])
    def test_announces_below_threshold_then_one_summary(self, scheduler, flushed, deaths):
        """Deaths within one window: at most threshold-1 announced, one summary if any were held."""
        suppressor = self.make(scheduler, flushed)
        start = utc_timestamp(2026, 2, 1, 10, 0)
        announced = [suppressor.record_death("Bob", start + datetime.timedelta(seconds=5 * i))
                     for i in range(deaths)]

        assert sum(announced) == min(deaths, 2)
        scheduler.advance(60)
        if deaths >= 3:
            assert len(flushed) == 1
            assert flushed[0].count == deaths
            assert flushed[0].first_timestamp == start
        else:
            assert flushed == []

    def test_timer_fires_at_window_end(self, scheduler, flushed):
        suppressor = self.make(scheduler, flushed)
        start = utc_timestamp(2026, 2, 1, 10, 0)
        for seconds in (0, 20, 40):
            suppressor.record_death("Bob", start + datetime.timedelta(seconds=seconds))

        scheduler.advance(19)
        assert flushed == []
        scheduler.advance(1)
        assert len(flushed) == 1

    def test_new_window_flushes_pending(self, scheduler, flushed):
        suppressor = self.make(scheduler, flushed)
        start = utc_timestamp(2026, 2, 1, 10, 0)
        for seconds in (0, 10, 20):
            suppressor.record_death("Bob", start + datetime.timedelta(seconds=seconds))

        assert suppressor.record_death("Bob", start + datetime.timedelta(minutes=5)) is True
        assert len(flushed) == 1
        assert flushed[0].count == 3

    def test_players_are_tracked_separately(self, scheduler, flushed):
        suppressor = self.make(scheduler, flushed)
        ts = utc_timestamp(2026, 2, 1, 10, 0)
        suppressor.record_death("Bob", ts)
        suppressor.record_death("Bob", ts)
        assert suppressor.record_death("Alice", ts) is True
        assert suppressor.record_death("bob", ts) is False

    def test_flush_all_and_cancel_all(self, scheduler, flushed):
        suppressor = self.make(scheduler, flushed)
        ts = utc_timestamp(2026, 2, 1, 10, 0)
        for _ in range(3):
            suppressor.record_death("Bob", ts)
        suppressor.record_death("Alice", ts)

        suppressor.flush_all()
        suppressor.cancel_all()
        assert [entry.player for entry in flushed] == ["Bob"]
        scheduler.advance(120)
        assert len(flushed) == 1
