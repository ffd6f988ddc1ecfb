"""Tests for distance math, the reporting window and the rate limiter."""

from datetime import datetime

import numpy as np
import pytest

from hazardwatch.lifecycle.policy import FixedWindowRateLimiter, TimeWindowPolicy, UnlimitedRateLimiter
from hazardwatch.models import BoundingBox, GeoLocation
from hazardwatch.utils.config import Config
from hazardwatch.utils.errors import ConfigError
from hazardwatch.utils.geo import distance_meters, distances_meters

from conftest import ORIGIN, near


def test_distance_is_zero_for_same_point():
    assert distance_meters(ORIGIN, ORIGIN) == 0.0


def test_distance_matches_known_city_pair():
    bangalore = GeoLocation(12.9716, 77.5946)
    chennai = GeoLocation(13.0827, 80.2707)
    # ~290 km great-circle
    assert distance_meters(bangalore, chennai) == pytest.approx(290_000, rel=0.01)


def test_distance_is_symmetric():
    other = near(north_m=120, east_m=-45)
    assert distance_meters(ORIGIN, other) == pytest.approx(distance_meters(other, ORIGIN))


def test_offsets_measure_back_to_meters():
    assert distance_meters(ORIGIN, near(north_m=20)) == pytest.approx(20.0, abs=0.01)
    assert distance_meters(ORIGIN, near(east_m=30)) == pytest.approx(30.0, abs=0.01)


def test_vectorised_distances_agree_with_scalar():
    points = [near(north_m=5), near(east_m=50), near(north_m=-300, east_m=10)]
    vector = distances_meters(ORIGIN, [p.lat for p in points], [p.lng for p in points])
    scalar = [distance_meters(ORIGIN, p) for p in points]
    np.testing.assert_allclose(vector, scalar, rtol=1e-9)


def test_vectorised_distances_empty():
    assert distances_meters(ORIGIN, [], []).shape == (0,)


def test_bounding_box_across_antimeridian():
    box = BoundingBox(south=-10, west=170, north=10, east=-170)
    assert box.contains(GeoLocation(0, 179.5))
    assert box.contains(GeoLocation(0, -175))
    assert not box.contains(GeoLocation(0, 0))


@pytest.mark.parametrize(
    "hour,minute,expected",
    [
        (5, 59, False),
        (6, 0, True),
        (12, 0, True),
        (17, 59, True),
        (18, 0, False),
        (23, 30, False),
    ],
)
def test_submission_window_boundaries(hour, minute, expected):
    policy = TimeWindowPolicy()
    assert policy.is_submission_window_open(datetime(2026, 3, 10, hour, minute)) is expected


def test_submission_window_uses_device_wall_clock():
    policy = TimeWindowPolicy(open_hour=7, close_hour=19)
    assert policy.is_submission_window_open(datetime(2026, 3, 10, 18, 30))
    assert "07:00" in policy.describe()


def test_rate_limiter_blocks_after_quota_and_resets():
    limiter = FixedWindowRateLimiter(window_seconds=900, max_requests=3)

    assert all(limiter.allow("dev-a", now=100.0 + i) for i in range(3))
    assert not limiter.allow("dev-a", now=110.0)
    # other devices are unaffected
    assert limiter.allow("dev-b", now=110.0)
    # window over
    assert limiter.allow("dev-a", now=100.0 + 901)


def test_rate_limiter_prune_drops_expired_windows():
    limiter = FixedWindowRateLimiter(window_seconds=10, max_requests=1)
    limiter.allow("dev-a", now=0.0)
    limiter.allow("dev-b", now=5.0)

    assert limiter.prune(now=12.0) == 1


def test_rate_limiter_sweeps_expired_windows_while_allowing():
    limiter = FixedWindowRateLimiter(window_seconds=10, max_requests=1)
    limiter.allow("dev-a", now=0.0)
    limiter.allow("dev-b", now=5.0)
    assert len(limiter) == 2

    assert limiter.allow("dev-c", now=12.0)
    # dev-a expired, dev-b still inside its window
    assert len(limiter) == 2
    assert not limiter.allow("dev-b", now=13.0)

    for i in range(50):
        limiter.allow(f"dev-burst-{i}", now=14.0)
    assert limiter.allow("dev-d", now=40.0)
    assert len(limiter) == 1


def test_unlimited_rate_limiter():
    limiter = UnlimitedRateLimiter()
    assert all(limiter.allow("dev-a") for _ in range(500))


def test_config_load_applies_yaml_and_env(tmp_path, monkeypatch):
    config_file = tmp_path / "config.yaml"
    config_file.write_text(
        "aws:\n"
        "  region: ap-south-1\n"
        "engine:\n"
        "  resolution_threshold: 5\n"
        "storage:\n"
        "  reports_path: reports.jsonl\n"
    )
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("ORACLE_TIMEOUT_SECONDS", "12.5")
    monkeypatch.delenv("AWS_REGION", raising=False)
    monkeypatch.delenv("REPORTS_PATH", raising=False)

    config = Config.load(str(config_file))

    assert config.aws_region == "ap-south-1"
    assert config.engine.resolution_threshold == 5
    assert config.engine.new_hazard_exclusion_radius_m == 20.0
    assert config.engine.oracle_timeout_seconds == 12.5
    assert config.storage.reports_path == "reports.jsonl"
    assert config.logging.level == "DEBUG"


def test_config_rejects_inverted_window(tmp_path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text("engine:\n  window_open_hour: 18\n  window_close_hour: 6\n")

    with pytest.raises(ConfigError):
        Config.load(str(config_file))


def test_default_config_keeps_reports_in_memory():
    config = Config.default()
    assert config.storage.reports_path is None
    assert config.engine.resolution_threshold == 3
