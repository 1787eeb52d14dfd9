"""
Score Manager：評分與宣布得獎者

同一活動的分數寫入會排隊執行（event row lock 加上 keyed process lock），
暫定標記的重新計算會讀寫整個範圍

得獎欄位：
- is_winner / winner_position：只由 declare_winners 寫入（正式結果）
- provisional_is_winner / provisional_position：每次寫入分數時更新
"""
import logging
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session

from database import get_settings, transactional
from models import (
    AlertPriority,
    AlertType,
    EventLog,
    EventRound,
    Registration,
    RoundRegistration,
    RoundRegistrationStatus,
    Score,
    SystemAlert,
)
from core.exceptions import (
    EventNotFound,
    RegistrationNotFound,
    RoundEventMismatch,
    RoundNotFound,
    ScoreNotFound,
    ValidationFailed,
)
from core.locks import keyed_lock, with_event_lock
from services.scoring_service import (
    PODIUM_SIZE,
    PODIUM_STATUSES,
    announcement_message,
    assign_positions,
    iter_rankings,
    recompute_provisional_flags,
    scope_query,
)

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal("0.01")


def _validate_value(value) -> Decimal:
    value = Decimal(str(value))
    if value < 0:
        raise ValidationFailed(f"Score value cannot be negative, got {value}")
    if value >= 1000:
        raise ValidationFailed(f"Score value {value} does not fit in 5 digits")
    return value


class ScoreManager:

    @staticmethod
    def submit_score(
        db: Session,
        event_id: int,
        judge_id: int,
        value,
        registration_id: Optional[int] = None,
        round_id: Optional[int] = None,
        comments: Optional[str] = None,
    ) -> Score:
        """
        記錄評審分數並更新暫定得獎標記

        拋出：
            ValidationFailed：分數為負數
            EventNotFound / RegistrationNotFound / RoundNotFound
            RoundEventMismatch：報名或回合屬於其他活動
        """
        value = _validate_value(value)
        with keyed_lock(f"scores:{event_id}"):
            return ScoreManager._submit(
                db, event_id, judge_id, value, registration_id, round_id, comments
            )

    @staticmethod
    @transactional
    def _submit(db, event_id, judge_id, value, registration_id, round_id, comments) -> Score:
        # 1. 鎖定活動
        event = with_event_lock(event_id, db).first()
        if not event:
            raise EventNotFound(event_id)

        # 2. 報名與回合必須屬於同一活動
        if registration_id is not None:
            registration = db.query(Registration).filter(Registration.id == registration_id).first()
            if not registration:
                raise RegistrationNotFound(registration_id)
            if registration.event_id != event_id:
                raise RoundEventMismatch(
                    f"Registration {registration_id} does not belong to event {event_id}"
                )
        if round_id is not None:
            round_obj = db.query(EventRound).filter(EventRound.id == round_id).first()
            if not round_obj:
                raise RoundNotFound(round_id)
            if round_obj.event_id != event_id:
                raise RoundEventMismatch(f"Round {round_id} does not belong to event {event_id}")

        # 3. 寫入
        score = Score(
            event_id=event_id,
            registration_id=registration_id,
            round_id=round_id,
            judge_id=judge_id,
            value=value,
            comments=comments,
        )
        db.add(score)
        db.flush()

        # 4. 暫定標記
        if get_settings().provisional_winner_flags:
            recompute_provisional_flags(db, event_id, round_id)

        logger.info(
            f"Score {score.id} = {value} by judge {judge_id} "
            f"(event {event_id}, round {round_id}, registration {registration_id})"
        )
        return score

    @staticmethod
    def update_score(
        db: Session,
        score_id: int,
        value,
        comments: Optional[str] = None,
    ) -> Score:
        """
        修改分數並更新所屬範圍的暫定標記

        拋出：
            ScoreNotFound
            ValidationFailed
        """
        value = _validate_value(value)
        score = db.query(Score).filter(Score.id == score_id).first()
        if not score:
            raise ScoreNotFound(score_id)
        with keyed_lock(f"scores:{score.event_id}"):
            return ScoreManager._update(db, score_id, value, comments)

    @staticmethod
    @transactional
    def _update(db, score_id, value, comments) -> Score:
        score = db.query(Score).filter(Score.id == score_id).first()
        if not score:
            raise ScoreNotFound(score_id)
        with_event_lock(score.event_id, db).first()

        score.value = value
        if comments is not None:
            score.comments = comments
        db.flush()

        if get_settings().provisional_winner_flags:
            recompute_provisional_flags(db, score.event_id, score.round_id)

        logger.info(f"Score {score_id} updated to {value}")
        return score

    @staticmethod
    def declare_winners(
        db: Session,
        event_id: int,
        round_id: Optional[int] = None,
        tie_policy: Optional[str] = None,
    ) -> List[dict]:
        """
        批次排名：依平均分數排名並宣布前三名

        流程（同一個 transaction）：
        1. 以各評審的平均分數為範圍內每個報名排名
        2. 重設整個範圍的 is_winner / winner_position
        3. 前三名在範圍內的所有分數標上名次 1..3
        4. 回合範圍：在 RoundRegistration 記錄分數與名次，標記得獎
        5. 每位得獎者一則 WinnerAnnouncement 通知（不重複發送）

        注意：分數沒變時重複執行，結果相同

        返回：
            名次 dict 列表：registration_id、user_id、mean_score、position
        """
        policy = tie_policy or get_settings().winner_tie_policy
        with keyed_lock(f"scores:{event_id}"):
            return ScoreManager._declare(db, event_id, round_id, policy)

    @staticmethod
    @transactional
    def _declare(db: Session, event_id: int, round_id: Optional[int], tie_policy: str) -> List[dict]:
        event = with_event_lock(event_id, db).first()
        if not event:
            raise EventNotFound(event_id)

        round_obj = None
        if round_id is not None:
            round_obj = db.query(EventRound).filter(EventRound.id == round_id).first()
            if not round_obj:
                raise RoundNotFound(round_id)
            if round_obj.event_id != event_id:
                raise RoundEventMismatch(f"Round {round_id} does not belong to event {event_id}")

        # 1. 排名
        placements = list(assign_positions(iter_rankings(db, event_id, round_id), tie_policy))

        # 2. 重設
        scope_query(db, event_id, round_id).update(
            {Score.is_winner: False, Score.winner_position: None},
            synchronize_session="fetch",
        )

        # 3. 前三名
        podium = [p for p in placements if p.position <= PODIUM_SIZE]
        if tie_policy == "sequential":
            podium = podium[:PODIUM_SIZE]

        for placement in podium:
            scope_query(db, event_id, round_id).filter(
                Score.registration_id == placement.registration_id
            ).update(
                {Score.is_winner: True, Score.winner_position: placement.position},
                synchronize_session="fetch",
            )

        # 4. 回合名次
        if round_obj is not None:
            ScoreManager._snapshot_round(db, round_obj, placements)

        # 5. 公告
        registrations = {
            r.id: r for r in db.query(Registration).filter(
                Registration.id.in_([p.registration_id for p in podium])
            )
        }
        result = []
        for placement in podium:
            registration = registrations[placement.registration_id]
            ScoreManager._announce(db, event, round_obj, registration, placement.position)
            result.append({
                "registration_id": registration.id,
                "user_id": registration.user_id,
                "mean_score": placement.mean_score,
                "position": placement.position,
            })

        db.add(EventLog(
            event_id=event_id,
            event_type="WINNERS_DECLARED",
            data={
                "round_id": round_id,
                "tie_policy": tie_policy,
                "podium": [[p.registration_id, p.position] for p in podium],
            },
        ))
        db.flush()

        logger.info(
            f"Declared {len(podium)} winners for event {event_id}, round {round_id} "
            f"({len(placements)} ranked)"
        )
        return result

    @staticmethod
    def _snapshot_round(db: Session, round_obj: EventRound, placements) -> None:
        standings = {
            rr.registration_id: rr
            for rr in db.query(RoundRegistration).filter(RoundRegistration.round_id == round_obj.id)
        }

        for rr in standings.values():
            if rr.status in PODIUM_STATUSES.values():
                rr.status = RoundRegistrationStatus.QUALIFIED

        for placement in placements:
            rr = standings.get(placement.registration_id)
            if rr is None:
                # 有分數但沒有加入此回合
                logger.warning(
                    f"Registration {placement.registration_id} has scores in round "
                    f"{round_obj.id} but no round registration"
                )
                continue
            rr.score = placement.mean_score.quantize(TWO_PLACES)
            rr.rank_position = placement.position
            if placement.position in PODIUM_STATUSES:
                rr.status = PODIUM_STATUSES[placement.position]

    @staticmethod
    def _announce(db: Session, event, round_obj, registration: Registration, position: int) -> None:
        message = announcement_message(
            position, event.name, round_obj.name if round_obj else None
        )
        already_sent = db.query(SystemAlert).filter(
            SystemAlert.alert_type == AlertType.WINNER_ANNOUNCEMENT,
            SystemAlert.user_id == registration.user_id,
            SystemAlert.related_event_id == event.id,
            SystemAlert.related_round_id == (round_obj.id if round_obj else None),
            SystemAlert.message == message,
        ).first()
        if already_sent:
            return

        db.add(SystemAlert(
            user_id=registration.user_id,
            alert_type=AlertType.WINNER_ANNOUNCEMENT,
            message=message,
            related_event_id=event.id,
            related_round_id=round_obj.id if round_obj else None,
            priority=AlertPriority.HIGH,
        ))

    @staticmethod
    def get_scores(db: Session, event_id: int, round_id: Optional[int] = None) -> List[Score]:
        return scope_query(db, event_id, round_id).order_by(Score.id).all()

    @staticmethod
    def get_winners(db: Session, event_id: int) -> List[dict]:
        """活動所有範圍已宣布的名次，每筆得獎分數一列"""
        rows = (
            db.query(Score, EventRound, Registration)
            .outerjoin(EventRound, Score.round_id == EventRound.id)
            .join(Registration, Score.registration_id == Registration.id)
            .filter(Score.event_id == event_id, Score.is_winner.is_(True))
            .order_by(EventRound.round_order, Score.winner_position, Score.id)
            .all()
        )
        return [
            {
                "score_id": score.id,
                "round_id": round_obj.id if round_obj else None,
                "round_name": round_obj.name if round_obj else None,
                "registration_id": registration.id,
                "user_id": registration.user_id,
                "value": score.value,
                "winner_position": score.winner_position,
            }
            for score, round_obj, registration in rows
        ]
