"""
Carousel and broadcast dispatch: queue to the Celery worker when the broker is reachable,
otherwise run the work in-process (FastAPI BackgroundTasks or inline).
"""
import logging
import os
import time
from typing import Any, Optional

from kombu import Connection
from kombu.exceptions import OperationalError

from audisell.services.broadcasts import run_broadcast
from audisell.services.pipeline import run_carousel_pipeline

logger = logging.getLogger(__name__)

RABBITMQ_TIMEOUT = 2  # seconds


def _broker_url() -> str:
    return os.getenv("RABBITMQ_URL", "")


def _eager() -> bool:
    return os.getenv("CELERY_EAGER", "").strip().lower() in {"1", "true", "yes"}


class TaskDispatcher:
    def __init__(self):
        self._worker_available: Optional[bool] = None
        self._last_check_time: float = 0
        self._check_interval = 60  # seconds between broker checks

    def reset(self) -> None:
        self._worker_available = None
        self._last_check_time = 0

    def _is_worker_available(self) -> bool:
        now = time.time()
        if self._worker_available is not None and (now - self._last_check_time) < self._check_interval:
            return self._worker_available

        url = _broker_url()
        if not url:
            self._worker_available = False
            self._last_check_time = now
            return False

        try:
            with Connection(url, transport_options={"socket_timeout": RABBITMQ_TIMEOUT}) as conn:
                conn.ensure_connection(max_retries=1)
            self._worker_available = True
        except (OperationalError, OSError) as e:
            logger.warning("[TaskDispatcher] Broker unavailable: %s", e)
            self._worker_available = False
        self._last_check_time = now
        return self._worker_available

    def dispatch_carousel(self, carousel_id: Any, background_tasks: Any = None) -> str:
        """Start processing ``carousel_id``.

        Returns "eager", "queued", "background" or "inline".
        """
        from worker.tasks.carousels import generate_carousel

        cid = str(carousel_id)
        if _eager():
            generate_carousel.apply(args=[cid])
            logger.info("[TaskDispatcher] Carousel processed eagerly: carousel_id=%s", cid)
            return "eager"

        if self._is_worker_available():
            try:
                generate_carousel.apply_async(args=[cid])
                logger.info("[TaskDispatcher] Carousel queued to worker: carousel_id=%s", cid)
                return "queued"
            except OperationalError as e:
                logger.error("[TaskDispatcher] Failed to queue carousel, falling back to in-process: %s", e)
                self._worker_available = False

        if background_tasks is not None:
            background_tasks.add_task(run_carousel_pipeline, cid)
            logger.info("[TaskDispatcher] Carousel scheduled as background task: carousel_id=%s", cid)
            return "background"

        run_carousel_pipeline(cid)
        logger.info("[TaskDispatcher] Carousel processed inline: carousel_id=%s", cid)
        return "inline"

    def dispatch_broadcast(self, job_id: Any, background_tasks: Any = None) -> str:
        """Deliver a broadcast job; same fallbacks as dispatch_carousel."""
        from worker.tasks.notifications import process_broadcast

        jid = str(job_id)
        if _eager():
            process_broadcast.apply(args=[jid])
            return "eager"

        if self._is_worker_available():
            try:
                process_broadcast.apply_async(args=[jid])
                logger.info("[TaskDispatcher] Broadcast queued to worker: job_id=%s", jid)
                return "queued"
            except OperationalError as e:
                logger.error("[TaskDispatcher] Failed to queue broadcast, falling back to in-process: %s", e)
                self._worker_available = False

        if background_tasks is not None:
            background_tasks.add_task(run_broadcast, jid)
            logger.info("[TaskDispatcher] Broadcast scheduled as background task: job_id=%s", jid)
            return "background"

        run_broadcast(jid)
        return "inline"

    def get_status(self) -> dict:
        url = _broker_url()
        return {
            "eager": _eager(),
            "worker_available": self._is_worker_available(),
            "rabbitmq_url": url[:30] + "..." if url else None,
        }


dispatcher = TaskDispatcher()
