import logging
import os
from datetime import timedelta

from redis import Redis
from rq import Queue

logger = logging.getLogger(__name__)


def _queue_name() -> str:
    return (os.getenv("RQ_QUEUE") or "nima").strip()


def _redis() -> Redis:
    redis_url = os.getenv("REDIS_URL")
    if not redis_url:
        raise RuntimeError("REDIS_URL is not set (remember: redis has password)")
    return Redis.from_url(redis_url)


def _queue() -> Queue:
    return Queue(_queue_name(), connection=_redis())


def schedule(func_path: str, *args, delay: int = 0):
    """
    Fire-and-forget постановка задачи ("jobs.generate_look_image", look_id, ...).
    Порядок выполнения и завершение не гарантируются.
    """
    q = _queue()
    if delay > 0:
        return q.enqueue_in(timedelta(seconds=delay), func_path, *args)
    return q.enqueue(func_path, *args)


def schedule_quietly(func_path: str, *args, delay: int = 0) -> bool:
    """Для побочных эффектов (уведомления): ошибка очереди не должна ронять основную операцию."""
    try:
        schedule(func_path, *args, delay=delay)
        return True
    except Exception as e:
        logger.warning("failed to schedule %s: %s", func_path, e)
        return False


class AfterCommit:
    """
    Копит задачи внутри транзакции и отправляет их только после db.commit(),
    чтобы воркер никогда не увидел незакоммиченные строки.
    """

    def __init__(self):
        self._pending: list[tuple[str, tuple, int]] = []

    def add(self, func_path: str, *args, delay: int = 0):
        self._pending.append((func_path, args, delay))

    def __len__(self):
        return len(self._pending)

    def dispatch(self) -> int:
        pending, self._pending = self._pending, []
        for func_path, args, delay in pending:
            schedule(func_path, *args, delay=delay)
        return len(pending)

    def commit(self, db) -> int:
        """db.commit(), затем отправка. Записи уже сохранены: сбой очереди оставляет их pending."""
        db.commit()
        count = len(self._pending)
        try:
            return self.dispatch()
        except Exception as e:
            logger.warning("failed to dispatch %d jobs after commit: %s", count, e)
            return 0
