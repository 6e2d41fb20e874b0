"""PresenceListener: Redis PubSub transport for presence snapshots.

Pattern-subscribes to PRESENCE_CHANNEL_PATTERN (e.g. "network/*/presence").
The channel name is the routing key; the message body is the JSON snapshot.
Each message is processed in its own task; per-network locks keep events
of one network in arrival order. At most max_inflight events run at once;
when all slots are taken the listener stops reading from Redis until one
frees up. stop() drains in-flight events.
"""
import asyncio
import logging

from redis.asyncio import Redis

from services.presence import PresenceProcessor

logger = logging.getLogger("netmon.presence_listener")


class PresenceListener:

    def __init__(
        self,
        redis: Redis,
        processor: PresenceProcessor,
        *,
        pattern: str = "network/*/presence",
        max_inflight: int = 100,
    ):
        self.redis = redis
        self.processor = processor
        self.pattern = pattern
        self._running = False
        self._inflight: set[asyncio.Task] = set()
        self._slots = asyncio.Semaphore(max_inflight)

    async def start(self) -> None:
        self._running = True
        logger.info("PresenceListener started (pattern=%s)", self.pattern)
        await self._subscribe()

    async def stop(self) -> None:
        self._running = False
        if self._inflight:
            logger.info("PresenceListener draining %d in-flight event(s)", len(self._inflight))
            await asyncio.gather(*self._inflight, return_exceptions=True)
        logger.info("PresenceListener stopped")

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    # ------------------------------------------------------------------
    async def _subscribe(self) -> None:
        while self._running:
            pubsub = self.redis.pubsub()
            try:
                await pubsub.psubscribe(self.pattern)
                async for msg in pubsub.listen():
                    if not self._running:
                        break
                    if msg["type"] != "pmessage":
                        continue
                    await self.dispatch(msg["channel"], msg["data"])
            except asyncio.CancelledError:
                break
            except Exception as exc:
                logger.error("PresenceListener subscribe error: %s, retry in 2s", exc)
                await asyncio.sleep(2)
            finally:
                try:
                    await pubsub.punsubscribe(self.pattern)
                    await pubsub.close()
                except Exception as exc:
                    logger.debug("PresenceListener pubsub cleanup failed: %s", exc)

    async def dispatch(self, channel, data) -> asyncio.Task:
        if isinstance(channel, bytes):
            channel = channel.decode("utf-8", errors="replace")
        await self._slots.acquire()
        task = asyncio.create_task(self.processor.process(channel, data))
        self._inflight.add(task)
        task.add_done_callback(self._release)
        return task

    def _release(self, task: asyncio.Task) -> None:
        self._inflight.discard(task)
        self._slots.release()
