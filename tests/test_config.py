"""Tests for threshold configuration."""

import pytest

from insight_miner.config import ConfigurationError, MiningThresholds, Settings


def test_default_thresholds():
    thresholds = MiningThresholds()
    assert thresholds.min_sample_size == 10
    assert thresholds.min_confidence == 0.8
    assert thresholds.min_time_periods == 2


@pytest.mark.parametrize(
    "overrides",
    [
        {"min_sample_size": 0},
        {"min_confidence": 0.0},
        {"min_confidence": 1.5},
        {"min_time_periods": 0},
        {"z": -1.0},
        {"sample_boost_cap": 2.0},
        {"timing_peak_multiplier": 1.0},
        {"cross_niche_min_pairs": 0},
    ],
)
def test_invalid_thresholds_raise(overrides):
    with pytest.raises(ConfigurationError):
        MiningThresholds(**overrides)


def test_thresholds_from_settings():
    config = Settings(min_sample_size=20, min_confidence=0.6, wilson_z=2.58)
    thresholds = MiningThresholds.from_settings(config)
    assert thresholds.min_sample_size == 20
    assert thresholds.min_confidence == 0.6
    assert thresholds.z == 2.58


def test_invalid_settings_surface_as_configuration_error():
    config = Settings(min_confidence=3.0)
    with pytest.raises(ConfigurationError, match="min_confidence"):
        MiningThresholds.from_settings(config)
