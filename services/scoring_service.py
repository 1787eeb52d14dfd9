"""
Scoring service：計算某個分數範圍的得獎者

範圍是 (event, round)，round 為 None 時代表整個活動層級的分數。兩種計算：

- recompute_provisional_flags：每次寫入分數時更新的暫定預覽
- iter_rankings / assign_positions：宣布得獎者用的批次排名

這裡不 commit，由呼叫端的 transaction 負責
"""
from collections import OrderedDict
from decimal import Decimal
from typing import Iterator, List, NamedTuple, Optional

from sqlalchemy.orm import Query, Session

from models import Registration, RegistrationStatus, RoundRegistrationStatus, Score

PODIUM_SIZE = 3

PODIUM_STATUSES = {
    1: RoundRegistrationStatus.WINNER,
    2: RoundRegistrationStatus.RUNNER_UP,
    3: RoundRegistrationStatus.THIRD_PLACE,
}

ORDINALS = {1: "1st", 2: "2nd", 3: "3rd"}


class RankedEntry(NamedTuple):
    registration_id: int
    mean_score: Decimal
    judge_count: int


class Placement(NamedTuple):
    registration_id: int
    mean_score: Decimal
    position: int


def scope_query(db: Session, event_id: int, round_id: Optional[int]) -> Query:
    query = db.query(Score).filter(Score.event_id == event_id)
    if round_id is None:
        return query.filter(Score.round_id.is_(None))
    return query.filter(Score.round_id == round_id)


def tie_count_position(tie_count: int) -> Optional[int]:
    """
    由並列最高分的數量決定暫定名次

    1 筆 -> 1、2 筆 -> 2、3 筆 -> 3、更多 -> None

    注意：這是並列領先的數量而不是排名，只作為預覽顯示
    """
    if 1 <= tie_count <= PODIUM_SIZE:
        return tie_count
    return None


def recompute_provisional_flags(db: Session, event_id: int, round_id: Optional[int]) -> List[Score]:
    """
    把範圍內所有最高分標記為暫定得獎

    返回：
        被標記為暫定得獎的分數
    """
    scores = scope_query(db, event_id, round_id).all()
    if not scores:
        return []

    top = max(score.value for score in scores)
    leaders = [score for score in scores if score.value == top]
    position = tie_count_position(len(leaders))

    for score in scores:
        if score.value == top:
            score.provisional_is_winner = True
            score.provisional_position = position
        else:
            score.provisional_is_winner = False
            score.provisional_position = None

    db.flush()
    return leaders


def iter_rankings(db: Session, event_id: int, round_id: Optional[int]) -> Iterator[RankedEntry]:
    """
    依各評審平均分數排列範圍內的報名

    排序：平均分數由高到低，相同時 registration id 由小到大，結果固定

    注意：
        - 沒有報名的分數與已取消的報名不列入排名
        - 每次呼叫都重新讀取範圍
    """
    rows = (
        scope_query(db, event_id, round_id)
        .join(Registration, Score.registration_id == Registration.id)
        .filter(Registration.status != RegistrationStatus.CANCELLED)
        .with_entities(Score.registration_id, Score.value)
        .order_by(Score.registration_id, Score.id)
        .all()
    )

    grouped = OrderedDict()
    for registration_id, value in rows:
        grouped.setdefault(registration_id, []).append(Decimal(value))

    entries = [
        RankedEntry(registration_id, sum(values) / len(values), len(values))
        for registration_id, values in grouped.items()
    ]
    entries.sort(key=lambda entry: (-entry.mean_score, entry.registration_id))
    yield from entries


def assign_positions(entries, tie_policy: str = "sequential") -> Iterator[Placement]:
    """
    為每個排名項目產生 Placement

    sequential：依排名順序給 1, 2, 3, ...（同分以 id 決定）
    shared：    同分共用名次，下一名跳號（1, 1, 3）
    """
    if tie_policy not in ("sequential", "shared"):
        raise ValueError(f"Unknown tie policy: {tie_policy}")

    previous_mean = None
    position = 0
    for index, entry in enumerate(entries, start=1):
        if tie_policy == "sequential" or entry.mean_score != previous_mean:
            position = index
        previous_mean = entry.mean_score
        yield Placement(entry.registration_id, entry.mean_score, position)


def announcement_message(position: int, event_name: str, round_name: Optional[str]) -> str:
    where = f"{round_name} of {event_name}" if round_name else event_name
    return f"Congratulations! You placed {ORDINALS[position]} in {where}!"
