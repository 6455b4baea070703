"""Tests for the market heuristics."""

import pytest

from insight_miner.market.scoring import (
    AVOID,
    CAUTION,
    ENTER,
    classify_saturation,
    opportunity_score,
    recommend_fusion,
    score_entry,
    score_fusion,
)


@pytest.mark.parametrize(
    "count,label",
    [
        (0, "unknown"),
        (1, "low"),
        (50, "low"),
        (51, "medium"),
        (200, "medium"),
        (201, "high"),
        (500, "high"),
        (501, "oversaturated"),
    ],
)
def test_classify_saturation_boundaries(count, label):
    assert classify_saturation(count) == label


def test_score_entry_low_competition_weak_reviews():
    entry = score_entry(10, "low", avg_reviews=5.0, rising_count=0)
    assert entry.score == 95
    assert entry.recommendation == ENTER
    assert entry.confidence == 20
    assert "Low competition" in entry.reason
    assert "Weak competitors" in entry.reason


def test_score_entry_oversaturated_entrenched():
    entry = score_entry(600, "oversaturated", avg_reviews=250.0, rising_count=0)
    assert entry.score == 0
    assert entry.recommendation == AVOID
    assert entry.confidence == 100


def test_score_entry_caution_band():
    entry = score_entry(100, "medium", avg_reviews=50.0, rising_count=0)
    assert entry.score == 60
    assert entry.recommendation == CAUTION


@pytest.mark.parametrize("rising,delta", [(0, 0), (1, 5), (5, 5), (6, 15)])
def test_score_entry_rising_listings(rising, delta):
    base = score_entry(100, "medium", 50.0, 0).score
    assert score_entry(100, "medium", 50.0, rising).score == base + delta


def test_score_entry_bands():
    assert score_entry(300, "high", 10.0, 0).score == 55
    assert score_entry(300, "high", 10.0, 0).recommendation == CAUTION
    assert score_entry(300, "high", 150.0, 0).score == 15
    assert score_entry(300, "high", 150.0, 0).recommendation == AVOID
    assert score_entry(30, "low", 50.0, 0).score == 75


def test_opportunity_score_is_clamped():
    assert opportunity_score("low", 5.0) == 100
    assert opportunity_score("oversaturated", 500.0) == 0
    assert opportunity_score("medium", 50.0) == 60


def test_score_fusion():
    assert score_fusion(5, 10.0, 50_000) == 100
    assert score_fusion(30, 100.0, None) == 50
    assert score_fusion(60, 300.0, 1_000_000) == 15
    assert score_fusion(20, 40.0, 200_000) == 75


@pytest.mark.parametrize(
    "count,engagement,expected",
    [
        (5, 10.0, (ENTER, "low")),
        (5, 60.0, (CAUTION, "medium")),
        (60, 10.0, (AVOID, "high")),
        (20, 250.0, (AVOID, "high")),
        (20, 60.0, (CAUTION, "medium")),
    ],
)
def test_recommend_fusion(count, engagement, expected):
    assert recommend_fusion(count, engagement) == expected
