import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from database import Base, engine, get_settings
from api import accommodations, alerts, events, payments, registrations, scores
from core.scheduler import get_scheduler

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: 建立資料庫表，依設定啟動背景計時器
    settings = get_settings()
    logging.basicConfig(level=settings.log_level)
    Base.metadata.create_all(bind=engine)

    scheduler = None
    if settings.scheduler_enabled:
        scheduler = get_scheduler()
        scheduler.start()
        logger.info("Background scheduler started")
    yield
    # Shutdown: 停止背景計時器
    if scheduler is not None:
        await scheduler.stop()
        logger.info("Background scheduler stopped")


app = FastAPI(
    title="NASCON Event Core API",
    description="Event lifecycle, scoring, accommodation, payments and alerts for the NASCON event platform",
    version="1.0.0",
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure this properly in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(events.router)
app.include_router(registrations.router)
app.include_router(scores.router)
app.include_router(accommodations.router)
app.include_router(payments.router)
app.include_router(alerts.router)


@app.get("/")
def root():
    return {"message": "NASCON Event Core API", "status": "ok"}


@app.get("/health")
def health():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
