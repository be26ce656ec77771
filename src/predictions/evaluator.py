"""Periodic resolution of expired predictions against market outcomes."""

import asyncio
import uuid
from datetime import datetime, timedelta
from typing import Callable, Optional, Protocol

import structlog
import structlog.contextvars
from apscheduler.events import EVENT_JOB_ERROR
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from errors import PersistenceError, TransientFetchError
from observability import metrics
from shared_types import Direction, PredictionStatus

from .models import Prediction, as_utc, utcnow
from .scoring import DEFAULT_MAX_TIME_BONUS, compute_score
from .store import StorageAdapter

logger = structlog.get_logger().bind(source="evaluator")

DEFAULT_MOON_THRESHOLD = 15.0


class PriceChangeSource(Protocol):
    async def get_price_change_since(self, token_id: str, since: datetime) -> Optional[float]: ...


def classify(direction: Direction, percentage: float, moon_threshold: float = DEFAULT_MOON_THRESHOLD) -> bool:
    """Whether a price move of ``percentage`` makes the call correct."""
    direction = Direction(direction)
    if direction == Direction.UP:
        return percentage > 0
    if direction == Direction.DOWN:
        return percentage < 0
    if direction == Direction.MOON:
        return percentage >= moon_threshold
    return percentage <= -moon_threshold


class EvaluationScheduler:
    """Sweeps expired pending predictions and scores them.

    Each candidate is handled independently: an unknown price leaves it
    pending for the next sweep, and an error on one never stops the others.
    Store updates are idempotent, so overlapping sweeps are safe.
    """

    def __init__(
        self,
        store: StorageAdapter,
        prices: PriceChangeSource,
        window: timedelta = timedelta(hours=24),
        moon_threshold: float = DEFAULT_MOON_THRESHOLD,
        max_time_bonus: int = DEFAULT_MAX_TIME_BONUS,
        fetch_timeout: Optional[float] = 15.0,
        concurrency: int = 5,
        clock: Callable[[], datetime] = utcnow,
        on_error: Optional[Callable] = None,
    ):
        if moon_threshold <= 0:
            raise ValueError("moon_threshold must be positive")
        self.store = store
        self.prices = prices
        self.window = window
        self.moon_threshold = moon_threshold
        self.max_time_bonus = max_time_bonus
        self.fetch_timeout = fetch_timeout
        self.concurrency = max(1, concurrency)
        self.clock = clock
        self.on_error = on_error
        self.scheduler: Optional[AsyncIOScheduler] = None
        self._active_ticks: set[asyncio.Task] = set()

    async def _resolve_change(self, prediction: Prediction) -> Optional[float]:
        lookup = self.prices.get_price_change_since(prediction.token_id, prediction.created_at)
        try:
            if self.fetch_timeout is None:
                return await lookup
            return await asyncio.wait_for(lookup, self.fetch_timeout)
        except (asyncio.TimeoutError, TransientFetchError) as e:
            logger.info(
                "price_unresolved",
                prediction_id=prediction.id,
                token_id=prediction.token_id,
                reason=type(e).__name__,
            )
            return None

    async def evaluate(self, prediction: Prediction, now: datetime) -> str:
        """Resolve one candidate. Returns correct/incorrect/unknown/skipped."""
        change = await self._resolve_change(prediction)
        if change is None:
            metrics.counter("evaluations_unknown")
            return "unknown"

        correct = classify(prediction.direction, change, self.moon_threshold)
        delta = compute_score(prediction, correct, self.window, self.max_time_bonus)
        status = PredictionStatus.CORRECT if correct else PredictionStatus.INCORRECT
        applied = await self.store.update_prediction_and_user(
            prediction.id, status, delta, evaluated_at=now, price_change=change
        )
        if not applied:
            metrics.counter("evaluations_skipped_duplicate")
            logger.debug("evaluation_already_applied", prediction_id=prediction.id)
            return "skipped"

        metrics.counter(f"evaluations_{status}")
        logger.info(
            "prediction_evaluated",
            prediction_id=prediction.id,
            user_id=prediction.user_id,
            token_id=prediction.token_id,
            direction=str(prediction.direction),
            price_change=round(change, 4),
            status=str(status),
            score_delta=delta,
        )
        return str(status)

    async def run_tick(self, now: Optional[datetime] = None) -> dict:
        """One sweep over every expired pending prediction."""
        now = as_utc(now or self.clock())
        task = asyncio.current_task()
        if task is not None:
            self._active_ticks.add(task)
        tick_id = uuid.uuid4().hex[:8]
        structlog.contextvars.bind_contextvars(tick_id=tick_id)
        summary = {
            "candidates": 0,
            "correct": 0,
            "incorrect": 0,
            "unknown": 0,
            "skipped": 0,
            "failed": 0,
        }
        try:
            async with metrics.async_timer("evaluation_tick"):
                try:
                    candidates = await self.store.get_pending_expired(now)
                except PersistenceError as e:
                    logger.error("evaluation_tick_store_unavailable", error=str(e))
                    summary["error"] = str(e)
                    return summary

                summary["candidates"] = len(candidates)
                semaphore = asyncio.Semaphore(self.concurrency)

                async def run_one(prediction: Prediction) -> str:
                    async with semaphore:
                        return await self.evaluate(prediction, now)

                results = await asyncio.gather(
                    *(run_one(p) for p in candidates), return_exceptions=True
                )
                for prediction, result in zip(candidates, results):
                    if isinstance(result, BaseException):
                        if not isinstance(result, Exception):
                            raise result
                        metrics.counter("evaluations_failed")
                        summary["failed"] += 1
                        logger.warning(
                            "evaluation_failed",
                            prediction_id=prediction.id,
                            error=str(result),
                            error_type=type(result).__name__,
                        )
                    else:
                        summary[result] += 1

            logger.info("evaluation_tick_done", **summary)
            return summary
        finally:
            structlog.contextvars.unbind_contextvars("tick_id")
            if task is not None:
                self._active_ticks.discard(task)

    # --- scheduling ---

    def _default_error_handler(self, event):
        """APScheduler job failure listener."""
        logger.error(
            "job_error",
            job_id=event.job_id,
            exception=str(event.exception),
            traceback=event.traceback,
        )
        if self.on_error:
            try:
                self.on_error(event)
            except Exception as e:
                logger.error("on_error_callback_failed", error=str(e))

    def start(self, interval_minutes: float = 60, run_immediately: bool = False):
        """Schedule run_tick on the running event loop every ``interval_minutes``."""
        if self.scheduler is not None:
            raise RuntimeError("evaluation scheduler already started")
        self.scheduler = AsyncIOScheduler(timezone="UTC")
        job_kwargs = {}
        if run_immediately:
            job_kwargs["next_run_time"] = utcnow()
        self.scheduler.add_job(
            self.run_tick,
            trigger=IntervalTrigger(minutes=interval_minutes),
            id="prediction_evaluation",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
            **job_kwargs,
        )
        self.scheduler.add_listener(self._default_error_handler, EVENT_JOB_ERROR)
        self.scheduler.start()
        logger.info("evaluation_scheduler_started", interval_minutes=interval_minutes)

    def stop(self, wait: bool = True):
        """Stop scheduling new ticks."""
        if self.scheduler is None:
            return
        self.scheduler.shutdown(wait=wait)
        self.scheduler = None
        logger.info("evaluation_scheduler_stopped")

    async def wait_idle(self):
        """Wait for any sweep already in progress to finish."""
        current = asyncio.current_task()
        pending = [t for t in self._active_ticks if t is not current]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def shutdown(self):
        """Stop scheduling, let an in-progress sweep finish, then tear down.

        The asyncio executor cancels running jobs on shutdown, so the
        scheduler is paused and drained first.
        """
        if self.scheduler is not None and self.scheduler.running:
            self.scheduler.pause()
        await self.wait_idle()
        self.stop(wait=False)
