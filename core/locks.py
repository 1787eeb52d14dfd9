"""
並發控制工具

兩層鎖定，一律搭配使用：

1. 行級鎖：PostgreSQL/MySQL 的 SELECT ... FOR UPDATE（悲觀鎖 Pessimistic Locking），
   跨 process 序列化 transaction
2. Keyed process lock：每個 key 一把 threading.Lock。SQLite 會忽略 FOR UPDATE，
   同一個 process 內靠這層達到相同的序列化

Keyed lock 必須持有到 transaction commit 為止，所以呼叫端要在
@transactional 函式「外面」取得它。
"""
from contextlib import contextmanager
from threading import Lock
from typing import Dict, Iterable, List

from sqlalchemy.orm import Query, Session

from models import Accommodation, AccommodationRequest, Event, Payment, Registration

# key -> [lock, 持有或等待中的數量]；數量歸零即移除
_key_locks: Dict[str, List] = {}
_key_locks_guard = Lock()


@contextmanager
def keyed_lock(key: str):
    """
    持有 `key` 的 process-wide lock

    範例：
        with keyed_lock(f"event:{event_id}"):
            EventManager._publish(db, event_id)

    注意：
        - 沒有人持有或等待的 key 會被移除，map 不會隨著事件數量無限成長
    """
    with _key_locks_guard:
        entry = _key_locks.get(key)
        if entry is None:
            entry = _key_locks[key] = [Lock(), 0]
        entry[1] += 1

    try:
        with entry[0]:
            yield
    finally:
        with _key_locks_guard:
            entry[1] -= 1
            if entry[1] == 0:
                del _key_locks[key]


def with_event_lock(event_id: int, db: Session) -> Query:
    """
    鎖定一個 Event（行級鎖）

    使用場景：
    - 發布活動時（每個活動只能建立一次預設回合）
    - 寫入分數時（暫定得獎者的重算會讀寫整個範圍）

    注意：
        - nowait=False 表示鎖被佔用時會等待，而不是直接失敗
    """
    return db.query(Event).filter(
        Event.id == event_id
    ).with_for_update(nowait=False)


def with_registration_lock(registration_id: int, db: Session) -> Query:
    return db.query(Registration).filter(
        Registration.id == registration_id
    ).with_for_update(nowait=False)


def with_payment_lock(payment_id: int, db: Session) -> Query:
    return db.query(Payment).filter(
        Payment.id == payment_id
    ).with_for_update(nowait=False)


def with_request_lock(request_id: int, db: Session) -> Query:
    return db.query(AccommodationRequest).filter(
        AccommodationRequest.id == request_id
    ).with_for_update(nowait=False)


def lock_accommodations(accommodation_ids: Iterable[int], db: Session) -> Query:
    """
    一次鎖定多個 Accommodation

    依 id 順序上鎖，兩個分配流程不會互相 deadlock。
    """
    return db.query(Accommodation).filter(
        Accommodation.id.in_(list(accommodation_ids))
    ).order_by(Accommodation.id).with_for_update(nowait=False)
