"""Unit tests for arangoclient.database.arango.queue_time module."""

from arangoclient.database.arango.queue_time import QueueTimeSample, QueueTimeTracker


def _filled(count: int, capacity: int = 10) -> QueueTimeTracker:
    tracker = QueueTimeTracker(capacity)
    for i in range(count):
        tracker.record(i / 10, timestamp=float(i))
    return tracker


class TestQueueTimeTracker:
    """Tests for QueueTimeTracker."""

    def test_empty_tracker(self) -> None:
        """An empty tracker has no latest value and a zero average."""
        tracker = QueueTimeTracker()
        assert tracker.get_values() == []
        assert tracker.get_latest() is None
        assert tracker.get_avg() == 0.0

    def test_values_are_oldest_first(self) -> None:
        tracker = _filled(3)
        assert tracker.get_values() == [
            QueueTimeSample(0.0, 0.0),
            QueueTimeSample(1.0, 0.1),
            QueueTimeSample(2.0, 0.2),
        ]
        assert tracker.get_latest() == 0.2

    def test_oldest_samples_are_evicted(self) -> None:
        tracker = _filled(12, capacity=10)
        values = tracker.get_values()
        assert len(values) == 10
        assert values[0].timestamp == 2.0
        assert values[-1].timestamp == 11.0

    def test_shrinking_capacity_keeps_most_recent(self) -> None:
        """Capacity 5 after 10 samples keeps the last 5, oldest first."""
        tracker = _filled(10)

        tracker.set_capacity(5)

        assert [sample.timestamp for sample in tracker.get_values()] == [5.0, 6.0, 7.0, 8.0, 9.0]
        assert tracker.capacity == 5

    def test_growing_capacity_keeps_samples(self) -> None:
        tracker = _filled(3, capacity=3)
        tracker.set_capacity(5)
        tracker.record(1.0)
        assert len(tracker) == 4

    def test_negative_capacity_is_unbounded(self) -> None:
        tracker = _filled(50, capacity=-1)
        assert len(tracker) == 50
        assert tracker.capacity == -1

    def test_average(self) -> None:
        tracker = QueueTimeTracker()
        for value in (0.5, 1.0, 1.5):
            tracker.record(value)
        assert tracker.get_avg() == 1.0

    def test_reset(self) -> None:
        tracker = _filled(4)
        tracker.reset()
        assert len(tracker) == 0
        assert tracker.get_latest() is None
