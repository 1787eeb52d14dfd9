"""
Scheduler：計時器驅動的背景排程

排程：
- due-sweep：把到期的通知標記為已送出（每小時）
- reminders：產生 EventReminder 通知（每天）

每次執行：
- 使用獨立的 Session 與 transaction（成功 commit，失敗 rollback）
- 上一次尚未結束時直接略過，不排隊
- 有時限，超過就中止並 rollback

執行來源：asyncio 計時器（啟動時 scheduler_enabled 為 true），
或外部排程器透過 run_job() 觸發
"""
import asyncio
import logging
import time
from threading import Lock
from typing import Callable, Dict, NamedTuple, Optional

from sqlalchemy.orm import sessionmaker

from database import SessionLocal, get_settings
from core.exceptions import JobTimeout
from services.alert_service import generate_event_reminders, sweep_due_alerts

logger = logging.getLogger(__name__)

DUE_SWEEP = "due-sweep"
REMINDERS = "reminders"


class JobResult(NamedTuple):
    job: str
    status: str  # ok | skipped | timeout | failed
    count: int = 0


class Job:
    def __init__(self, name: str, func: Callable, interval_seconds: int):
        self.name = name
        self.func = func
        self.interval_seconds = interval_seconds
        self.running = Lock()


class JobScheduler:
    """整個 process 共用的背景排程管理器"""

    def __init__(self, session_factory: sessionmaker, timeout_seconds: Optional[float] = None):
        settings = get_settings()
        self.session_factory = session_factory
        if timeout_seconds is None:
            timeout_seconds = settings.job_timeout_seconds
        self.timeout_seconds = timeout_seconds
        self.jobs: Dict[str, Job] = {
            DUE_SWEEP: Job(DUE_SWEEP, sweep_due_alerts, settings.due_sweep_interval_seconds),
            REMINDERS: Job(REMINDERS, generate_event_reminders, settings.reminder_interval_seconds),
        }
        self._tasks = []

    def run_job(self, name: str, now=None) -> JobResult:
        """
        執行某個排程一次

        返回：
            JobResult；上一次尚未結束時 status 為 "skipped"

        拋出：
            KeyError：排程名稱不存在
        """
        job = self.jobs[name]

        if not job.running.acquire(blocking=False):
            logger.warning(f"Job {name} is still running, skipping this run")
            return JobResult(name, "skipped")

        db = self.session_factory()
        started = time.monotonic()
        try:
            count = job.func(db, now=now, deadline=started + self.timeout_seconds)
            db.commit()
            logger.info(f"Job {name} finished in {time.monotonic() - started:.2f}s ({count} rows)")
            return JobResult(name, "ok", count)
        except JobTimeout as e:
            db.rollback()
            logger.error(f"Job {name} aborted: {e}; changes rolled back")
            return JobResult(name, "timeout")
        except Exception as e:
            db.rollback()
            logger.error(f"Job {name} failed: {e}", exc_info=True)
            return JobResult(name, "failed")
        finally:
            db.close()
            job.running.release()

    async def _loop(self, job: Job):
        logger.info(f"Starting {job.name} loop with interval {job.interval_seconds}s")
        while True:
            await asyncio.to_thread(self.run_job, job.name)
            await asyncio.sleep(job.interval_seconds)

    def start(self):
        """在目前的 event loop 上為每個排程啟動一個計時迴圈"""
        self._tasks = [asyncio.create_task(self._loop(job)) for job in self.jobs.values()]
        return self._tasks

    async def stop(self):
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []


_scheduler: Optional[JobScheduler] = None


def get_scheduler() -> JobScheduler:
    """FastAPI dependency，也是 process 內共用的存取點"""
    global _scheduler
    if _scheduler is None:
        _scheduler = JobScheduler(SessionLocal)
    return _scheduler


if __name__ == "__main__":
    import sys

    logging.basicConfig(level=get_settings().log_level)
    names = sys.argv[1:] or [DUE_SWEEP, REMINDERS]
    for job_name in names:
        print(get_scheduler().run_job(job_name))
