import sqlite3

import pytest

import db
from engines import stars
from engines.stars import StarAwardError, stars_for_score


@pytest.mark.parametrize(
    "score, amount, reason",
    [
        (99, 5, "Excellent score"),
        (90, 5, "Excellent score"),
        (89, 4, "Great score"),
        (75, 4, "Great score"),
        (74, 3, "Good score"),
        (60, 3, "Good score"),
        (59, 2, "Decent effort"),
        (40, 2, "Decent effort"),
        (39, 1, "Completion"),
        (0, 1, "Completion"),
    ],
)
def test_threshold_table(score, amount, reason):
    award = stars_for_score(score)
    assert award.amount == amount
    assert award.reason == reason
    assert award.is_perfect_score is False


def test_perfect_score_overrides_reason_only():
    award = stars_for_score(100)
    assert award.amount == 5
    assert award.reason == "perfect score"
    assert award.is_perfect_score is True
    assert stars_for_score(100.0).reason == "perfect score"
    assert stars_for_score(99).reason == "Excellent score"


def test_amounts_never_decrease_as_score_rises():
    amounts = [stars_for_score(score).amount for score in range(0, 101)]
    assert amounts == sorted(amounts)


def test_out_of_range_scores_are_not_clamped():
    assert stars_for_score(150) == stars.StarAward(5, "Excellent score")
    assert stars_for_score(-10) == stars.StarAward(1, "Completion")


def test_award_stars_updates_total(temp_db):
    stars.award_stars("kid-1", "act-1", "Maths", 95)
    stars.award_stars("kid-1", "act-2", "English", 50)

    records = stars.fetch_stars_for_child("kid-1")
    assert [r["amount"] for r in records] == [2, 5]
    assert records[1]["reason"] == "Excellent score"

    level = db.get_child_level("kid-1")
    assert level["total_stars"] == 7


def test_award_stars_failure_leaves_nothing(temp_db, monkeypatch):
    # The star row is written first, then the totals refresh fails in the same transaction
    with monkeypatch.context() as m:
        m.setattr(db, "_REFRESH_TOTALS_SQL", "INSERT INTO missing_totals VALUES (?, ?, ?)")
        with pytest.raises(StarAwardError) as exc:
            stars.award_stars("kid-1", "act-1", "Maths", 80)

    assert isinstance(exc.value.__cause__, sqlite3.OperationalError)
    assert db.list_stars("kid-1") == []
    assert db.get_child_level("kid-1") is None


def test_rejected_star_row_leaves_totals_untouched(temp_db):
    db.insert_star("kid-1", "act-1", 3, "Maths", "Good score")

    with pytest.raises(sqlite3.IntegrityError):
        db.insert_star("kid-1", "act-2", 0, "Maths", "Completion")

    assert [star["activity_id"] for star in db.list_stars("kid-1")] == ["act-1"]
    assert db.get_child_level("kid-1")["total_stars"] == 3


def test_summarize_stars_groups_by_subject(temp_db):
    for idx, score in enumerate([100, 80, 65, 30, 45, 91]):
        subject = "Maths" if idx % 2 == 0 else "English"
        stars.award_stars("kid-2", f"act-{idx}", subject, score)

    summary = stars.summarize_stars("kid-2")
    assert summary["total"] == 5 + 4 + 3 + 1 + 2 + 5
    assert summary["by_subject"] == {"Maths": 5 + 3 + 2, "English": 4 + 1 + 5}
    assert len(summary["recent"]) == 5
    assert summary["recent"][0]["activity_id"] == "act-5"
