"""
Tests for Anomaly Detector
"""

import pytest

from conftest import FakeClock
from lootbox.services.anomaly_detector import AnomalyDetector


class TestAnomalyDetector:
    """Tests for AnomalyDetector."""

    @pytest.fixture
    def clock(self):
        return FakeClock(start=0.0)

    @pytest.fixture
    def detector(self, clock):
        return AnomalyDetector(
            window_seconds=600, frequency_threshold=20, high_value_threshold=50_000, clock=clock
        )

    def test_frequency_threshold(self, detector):
        results = [detector.record_and_evaluate("a", "open_container") for _ in range(21)]

        assert not any(results[:20])
        assert results[20] is True

    def test_old_events_fall_out_of_window(self, detector, clock):
        for _ in range(20):
            detector.record_and_evaluate("a", "open_container")
        clock.advance(601)

        assert detector.record_and_evaluate("a", "open_container") is False
        assert len(detector.recent_events("a")) == 1

    def test_kinds_are_counted_separately(self, detector):
        for _ in range(20):
            detector.record_and_evaluate("a", "open_container")

        assert detector.record_and_evaluate("a", "liquidate_reward") is False

    def test_high_value(self, detector):
        assert detector.record_and_evaluate("a", "liquidate_reward", 50_000) is False
        assert detector.record_and_evaluate("a", "liquidate_reward", 50_001) is True

    def test_clear_actor(self, detector):
        detector.record_and_evaluate("a", "open_container")

        detector.clear_actor("a")

        assert detector.recent_events("a") == []
