"""
Scoring: provisional winner flags and the batch winner declaration.
"""
import threading
from decimal import Decimal

import pytest

from models import (
    AlertType,
    RegistrationStatus,
    RoundRegistration,
    RoundRegistrationStatus,
    Score,
    SystemAlert,
)
from core.event_manager import EventManager
from core.exceptions import RoundEventMismatch, ScoreNotFound, ValidationFailed
from core.score_manager import ScoreManager
from services.scoring_service import (
    RankedEntry,
    announcement_message,
    assign_positions,
    tie_count_position,
)

from conftest import make_published_event, register


@pytest.fixture
def contestants(db, published_event):
    return [register(db, published_event.id, user_id=uid) for uid in (101, 102, 103)]


def submit(db, event, registration, value, round_obj=None, judge_id=1):
    return ScoreManager.submit_score(
        db,
        event_id=event.id,
        judge_id=judge_id,
        value=Decimal(value),
        registration_id=registration.id,
        round_id=round_obj.id if round_obj else None,
    )


# ==========================================
# Provisional flags
# ==========================================

def test_tied_leaders_get_tie_count_position(db, published_event, rounds, contestants):
    prelims = rounds[0]
    a = submit(db, published_event, contestants[0], "95", prelims)
    b = submit(db, published_event, contestants[1], "95", prelims)
    c = submit(db, published_event, contestants[2], "80", prelims)

    for score in (a, b, c):
        db.refresh(score)

    assert (a.provisional_is_winner, a.provisional_position) == (True, 2)
    assert (b.provisional_is_winner, b.provisional_position) == (True, 2)
    assert c.provisional_is_winner is False
    assert c.provisional_position is None


def test_provisional_flags_leave_declared_fields_alone(db, published_event, rounds, contestants):
    score = submit(db, published_event, contestants[0], "90", rounds[0])
    db.refresh(score)

    assert score.provisional_is_winner is True
    assert score.is_winner is False
    assert score.winner_position is None


def test_update_moves_the_provisional_lead(db, published_event, rounds, contestants):
    a = submit(db, published_event, contestants[0], "70", rounds[0])
    b = submit(db, published_event, contestants[1], "60", rounds[0])

    ScoreManager.update_score(db, b.id, Decimal("88"))
    db.refresh(a)
    db.refresh(b)

    assert a.provisional_is_winner is False
    assert (b.provisional_is_winner, b.provisional_position) == (True, 1)


def test_scopes_are_independent(db, published_event, rounds, contestants):
    in_round = submit(db, published_event, contestants[0], "50", rounds[0])
    event_level = submit(db, published_event, contestants[1], "10")

    db.refresh(in_round)
    db.refresh(event_level)

    assert in_round.provisional_is_winner is True
    assert event_level.provisional_is_winner is True


def test_provisional_flags_can_be_disabled(db, settings, monkeypatch, published_event, contestants):
    monkeypatch.setattr(settings, "provisional_winner_flags", False)

    score = submit(db, published_event, contestants[0], "99")
    db.refresh(score)

    assert score.provisional_is_winner is False


def test_more_than_three_ties_have_no_position():
    assert tie_count_position(1) == 1
    assert tie_count_position(3) == 3
    assert tie_count_position(4) is None


# ==========================================
# Score validation
# ==========================================

def test_negative_score_rejected(db, published_event, contestants):
    with pytest.raises(ValidationFailed):
        submit(db, published_event, contestants[0], "-1")
    assert db.query(Score).count() == 0


def test_score_from_other_event_rejected(db, published_event, contestants):
    other = make_published_event(db, name="Other")

    with pytest.raises(RoundEventMismatch):
        ScoreManager.submit_score(
            db, event_id=other.id, judge_id=1, value=Decimal("10"),
            registration_id=contestants[0].id,
        )


def test_update_unknown_score(db):
    with pytest.raises(ScoreNotFound):
        ScoreManager.update_score(db, 404, Decimal("1"))


# ==========================================
# Concurrent score writes
# ==========================================

def run_concurrently(targets):
    barrier = threading.Barrier(len(targets))
    errors = []

    def runner(target):
        try:
            barrier.wait()
            target()
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=runner, args=(t,)) for t in targets]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return errors


def test_concurrent_submissions_keep_flags_consistent(file_session_factory):
    setup = file_session_factory()
    event = make_published_event(setup)
    event_id = event.id
    round_id = EventManager.get_rounds(setup, event_id)[0].id
    registration_ids = [register(setup, event_id, user_id=uid).id for uid in range(1, 6)]
    setup.close()

    values = ["95", "95", "80", "70", "60"]

    def submitter(registration_id, value):
        def target():
            session = file_session_factory()
            try:
                ScoreManager.submit_score(
                    session, event_id=event_id, judge_id=1, value=Decimal(value),
                    registration_id=registration_id, round_id=round_id,
                )
            finally:
                session.close()
        return target

    errors = run_concurrently([submitter(r, v) for r, v in zip(registration_ids, values)])

    check = file_session_factory()
    try:
        scores = ScoreManager.get_scores(check, event_id, round_id)
        assert errors == []
        assert len(scores) == 5
        leaders = [s for s in scores if s.provisional_is_winner]
        assert sorted(s.value for s in leaders) == [Decimal("95"), Decimal("95")]
        assert all(s.provisional_position == 2 for s in leaders)
        assert all(s.provisional_position is None for s in scores if not s.provisional_is_winner)
    finally:
        check.close()


def test_concurrent_updates_leave_one_leader(file_session_factory):
    setup = file_session_factory()
    event_id = make_published_event(setup).id
    registration_ids = [register(setup, event_id, user_id=uid).id for uid in range(1, 5)]
    score_ids = [
        ScoreManager.submit_score(
            setup, event_id=event_id, judge_id=1, value=Decimal("50"), registration_id=r
        ).id
        for r in registration_ids
    ]
    setup.close()

    def updater(score_id, value):
        def target():
            session = file_session_factory()
            try:
                ScoreManager.update_score(session, score_id, Decimal(value))
            finally:
                session.close()
        return target

    errors = run_concurrently([updater(s, v) for s, v in zip(score_ids, ["10", "99", "20", "30"])])

    check = file_session_factory()
    try:
        scores = ScoreManager.get_scores(check, event_id)
        assert errors == []
        assert [s.id for s in scores if s.provisional_is_winner] == [score_ids[1]]
        assert scores[1].provisional_position == 1
    finally:
        check.close()


# ==========================================
# Batch declaration
# ==========================================

def test_declare_ranks_by_mean_across_judges(db, published_event, rounds, contestants):
    prelims = rounds[0]
    a, b, c = contestants
    submit(db, published_event, a, "80", prelims, judge_id=1)
    submit(db, published_event, a, "90", prelims, judge_id=2)   # mean 85
    submit(db, published_event, b, "95", prelims, judge_id=1)
    submit(db, published_event, b, "70", prelims, judge_id=2)   # mean 82.5
    submit(db, published_event, c, "99", prelims, judge_id=1)   # mean 99

    podium = ScoreManager.declare_winners(db, published_event.id, prelims.id)

    assert [(p["registration_id"], p["position"]) for p in podium] == [(c.id, 1), (a.id, 2), (b.id, 3)]
    a_scores = db.query(Score).filter(Score.registration_id == a.id).all()
    assert all(s.is_winner and s.winner_position == 2 for s in a_scores)


def test_declare_is_idempotent(db, published_event, rounds, contestants):
    prelims = rounds[0]
    for registration, value in zip(contestants, ("70", "90", "80")):
        submit(db, published_event, registration, value, prelims)

    first = ScoreManager.declare_winners(db, published_event.id, prelims.id)
    second = ScoreManager.declare_winners(db, published_event.id, prelims.id)

    assert first == second
    announcements = db.query(SystemAlert).filter(
        SystemAlert.alert_type == AlertType.WINNER_ANNOUNCEMENT
    ).count()
    assert announcements == 3


def test_sequential_ties_break_by_registration_id(db, published_event, rounds, contestants):
    prelims = rounds[0]
    a, b, c = contestants
    submit(db, published_event, a, "95", prelims)
    submit(db, published_event, b, "95", prelims)
    submit(db, published_event, c, "80", prelims)

    podium = ScoreManager.declare_winners(db, published_event.id, prelims.id, tie_policy="sequential")

    assert [(p["registration_id"], p["position"]) for p in podium] == [(a.id, 1), (b.id, 2), (c.id, 3)]


def test_shared_ties_share_first_place(db, published_event, rounds, contestants):
    prelims = rounds[0]
    a, b, c = contestants
    submit(db, published_event, a, "95", prelims)
    submit(db, published_event, b, "95", prelims)
    submit(db, published_event, c, "80", prelims)

    podium = ScoreManager.declare_winners(db, published_event.id, prelims.id, tie_policy="shared")

    assert [(p["registration_id"], p["position"]) for p in podium] == [(a.id, 1), (b.id, 1), (c.id, 3)]


def test_declare_resets_previous_winners(db, published_event, rounds, contestants):
    prelims = rounds[0]
    a, b, c = contestants
    scores = [submit(db, published_event, r, v, prelims) for r, v in zip(contestants, ("90", "80", "70"))]
    ScoreManager.declare_winners(db, published_event.id, prelims.id)

    d = register(db, published_event.id, user_id=104)
    submit(db, published_event, d, "99", prelims)
    ScoreManager.declare_winners(db, published_event.id, prelims.id)

    db.refresh(scores[2])
    assert scores[2].is_winner is False
    assert scores[2].winner_position is None


def test_cancelled_registration_is_not_ranked(db, published_event, rounds, contestants):
    prelims = rounds[0]
    a, b, c = contestants
    submit(db, published_event, a, "99", prelims)
    submit(db, published_event, b, "50", prelims)
    a.status = RegistrationStatus.CANCELLED
    db.commit()

    podium = ScoreManager.declare_winners(db, published_event.id, prelims.id)

    assert [p["registration_id"] for p in podium] == [b.id]


def test_round_standings_are_snapshotted(db, published_event, rounds, contestants):
    prelims = rounds[0]
    a, b, c = contestants
    submit(db, published_event, a, "80", prelims, judge_id=1)
    submit(db, published_event, a, "85", prelims, judge_id=2)
    submit(db, published_event, b, "90", prelims)

    ScoreManager.declare_winners(db, published_event.id, prelims.id)

    standings = {
        rr.registration_id: rr
        for rr in db.query(RoundRegistration).filter(RoundRegistration.round_id == prelims.id)
    }
    assert standings[b.id].status == RoundRegistrationStatus.WINNER
    assert standings[b.id].rank_position == 1
    assert standings[a.id].status == RoundRegistrationStatus.RUNNER_UP
    assert standings[a.id].score == Decimal("82.50")
    assert standings[c.id].status == RoundRegistrationStatus.QUALIFIED
    assert standings[c.id].rank_position is None


def test_event_level_declaration(db, published_event, contestants):
    a, b, c = contestants
    submit(db, published_event, a, "60")
    submit(db, published_event, b, "70")

    podium = ScoreManager.declare_winners(db, published_event.id)
    winners = ScoreManager.get_winners(db, published_event.id)

    assert [p["registration_id"] for p in podium] == [b.id, a.id]
    assert [(w["registration_id"], w["round_id"]) for w in winners] == [(b.id, None), (a.id, None)]


def test_announcement_wording(db, published_event, rounds, contestants):
    submit(db, published_event, contestants[0], "90", rounds[2])

    ScoreManager.declare_winners(db, published_event.id, rounds[2].id)

    alert = db.query(SystemAlert).filter(
        SystemAlert.alert_type == AlertType.WINNER_ANNOUNCEMENT
    ).one()
    assert alert.user_id == contestants[0].user_id
    assert alert.message == "Congratulations! You placed 1st in Finals of Speed Programming!"


def test_assign_positions_rejects_unknown_policy():
    entries = [RankedEntry(1, Decimal("1"), 1)]
    with pytest.raises(ValueError):
        list(assign_positions(entries, "dense"))


def test_announcement_message_without_round():
    assert announcement_message(3, "Hackathon", None) == "Congratulations! You placed 3rd in Hackathon!"
