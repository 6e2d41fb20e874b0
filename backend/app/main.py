import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from redis.asyncio import Redis

from config import settings
from models import async_session, engine
from api.networks import router as networks_router
from api.devices import router as devices_router
from api.alarms import router as alarms_router
from services.alarm_scheduler import AlarmScheduler
from services.locks import network_locks
from services.notifier import build_notifier
from services.presence import PresenceProcessor
from services.presence_listener import PresenceListener
from services.unit_of_work import UnitOfWork

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger("netmon.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Network monitor starting... DEBUG=%s", settings.DEBUG)

    # Redis
    redis = Redis.from_url(settings.REDIS_URL, decode_responses=False)
    app.state.redis = redis
    logger.info("Redis connected: %s", settings.REDIS_URL)

    notifier = build_notifier(settings)
    logger.info("Notifier: %s", type(notifier).__name__)
    uow = UnitOfWork(
        async_session,
        notifier,
        network_locks,
        timeout=settings.UNIT_OF_WORK_TIMEOUT,
        notify_timeout=settings.NOTIFIER_TIMEOUT,
        default_destination=settings.DEFAULT_NOTIFY_DESTINATION,
    )

    # Presence ingestion
    listener = PresenceListener(
        redis,
        PresenceProcessor(uow),
        pattern=settings.PRESENCE_CHANNEL_PATTERN,
        max_inflight=settings.PRESENCE_MAX_INFLIGHT,
    )
    app.state.presence_listener = listener
    listener_task = asyncio.create_task(listener.start())

    # Alarm scheduler
    scheduler = AlarmScheduler(
        async_session,
        uow,
        initial_delay=settings.ALERT_CHECK_INITIAL_DELAY,
        interval=settings.ALERT_CHECK_INTERVAL,
    )
    app.state.alarm_scheduler = scheduler
    scheduler_task = asyncio.create_task(scheduler.start())

    yield

    # Shutdown: stop() lets in-flight work finish before tasks are cancelled
    logger.info("Network monitor shutting down...")
    await listener.stop()
    await scheduler.stop()

    for t in (listener_task, scheduler_task):
        t.cancel()
    for t in (listener_task, scheduler_task):
        try:
            await t
        except asyncio.CancelledError:
            pass

    await notifier.close()
    await redis.close()
    await engine.dispose()
    logger.info("Shutdown complete")


app = FastAPI(
    title="Network Presence Monitor",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(networks_router)
app.include_router(devices_router)
app.include_router(alarms_router)


@app.get("/health")
async def health():
    return {"status": "ok", "version": "0.1.0"}
