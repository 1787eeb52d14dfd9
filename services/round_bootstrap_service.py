"""
Round bootstrap service：活動固定的三階段回合

每個競賽活動都有相同的階段，以活動開始時間為基準：

- Prelims:      start + 0h .. start + 2h
- Semi-Finals:  start + 3h .. start + 5h
- Finals:       start + 6h .. start + 8h

所有回合都在活動場地進行
"""
from datetime import timedelta
from typing import List, NamedTuple

from sqlalchemy.orm import Session

from models import Event, EventRound, RoundStatus


class RoundTemplate(NamedTuple):
    name: str
    order: int
    start_offset: timedelta
    end_offset: timedelta


DEFAULT_ROUNDS = (
    RoundTemplate("Prelims", 1, timedelta(hours=0), timedelta(hours=2)),
    RoundTemplate("Semi-Finals", 2, timedelta(hours=3), timedelta(hours=5)),
    RoundTemplate("Finals", 3, timedelta(hours=6), timedelta(hours=8)),
)


def count_rounds(event_id: int, db: Session) -> int:
    return db.query(EventRound).filter(EventRound.event_id == event_id).count()


def build_default_rounds(event: Event) -> List[EventRound]:
    """
    產生活動的預設回合（不寫入資料庫）

    參數：
        event：正在發布的 Event

    返回：
        依回合順序排列的三個 EventRound
    """
    starts_at = event.starts_at
    return [
        EventRound(
            event_id=event.id,
            name=template.name,
            round_order=template.order,
            starts_at=starts_at + template.start_offset,
            ends_at=starts_at + template.end_offset,
            venue_id=event.venue_id,
            status=RoundStatus.SCHEDULED,
        )
        for template in DEFAULT_ROUNDS
    ]


def bootstrap_rounds(event: Event, db: Session) -> List[EventRound]:
    """
    活動還沒有回合時建立預設回合

    注意：呼叫端已持有 event lock，這裡只負責檢查與寫入

    返回：
        建立的回合；活動已有回合時返回空列表
    """
    if count_rounds(event.id, db) > 0:
        return []

    rounds = build_default_rounds(event)
    db.add_all(rounds)
    db.flush()  # 取得 id，後續加入報名時需要
    return rounds
