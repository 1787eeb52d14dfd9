from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from pydantic_settings import BaseSettings
from functools import lru_cache, wraps
from typing import Literal, Optional
import logging

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    database_url: str = "sqlite:///./nascon_core.db"
    # 例如 PostgreSQL 上的 "SERIALIZABLE"；None 表示沿用 driver 預設值
    isolation_level: Optional[str] = None

    backfill_enrollment_on_publish: bool = True
    provisional_winner_flags: bool = True
    winner_tie_policy: Literal["sequential", "shared"] = "sequential"

    scheduler_enabled: bool = False
    due_sweep_interval_seconds: int = 3600
    reminder_interval_seconds: int = 86400
    job_timeout_seconds: float = 300.0
    reminder_days_ahead: int = 3
    reminder_dedupe_days: int = 2

    log_level: str = "INFO"

    class Config:
        env_file = ".env"


@lru_cache()
def get_settings():
    return Settings()


settings = get_settings()


def build_engine(database_url: str, isolation_level: Optional[str] = None):
    """
    依 URL 建立 engine

    注意：SQLite 需要 check_same_thread=False，請求執行緒與排程執行緒才能共用連線池
    """
    kwargs = {"pool_pre_ping": True}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
    if isolation_level:
        kwargs["isolation_level"] = isolation_level
    return create_engine(database_url, **kwargs)


engine = build_engine(settings.database_url, settings.isolation_level)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    """
    FastAPI dependency：每個請求一個 Session

    回應送出後關閉 session
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def transactional(func):
    """
    Transaction decorator：整個函式是一個原子操作

    使用方式：
        @transactional
        def create_registration(db: Session, ...):
            registration = Registration(...)
            db.add(registration)
            # 由 decorator commit

    函式拋出異常時：
        - rollback 整個 session
        - 異常原樣拋出，由 API 層對應成 HTTP 狀態碼

    注意：
        - 第一個位置參數（或 `db` keyword）必須是 Session
        - 函式內不要自行 commit
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        db = None
        if args and isinstance(args[0], Session):
            db = args[0]
        elif 'db' in kwargs:
            db = kwargs['db']

        if db is None:
            raise ValueError(
                f"@transactional requires 'db: Session' as first argument, "
                f"but got args={args}, kwargs={kwargs}"
            )

        try:
            result = func(*args, **kwargs)
            db.commit()
            return result
        except Exception as e:
            logger.error(f"Transaction failed in {func.__name__}: {e}", exc_info=True)
            db.rollback()
            raise

    return wrapper
