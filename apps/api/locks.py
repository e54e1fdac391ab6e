import threading
from contextlib import contextmanager
from typing import Iterator


class KeyedLocks:
    """
    Не более одной операции на ключ в процессе (например, синк профиля по identity).
    Запись удаляется, когда последний держатель отпускает лок.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, tuple[threading.Lock, int]] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            lock, refs = self._locks.get(key, (threading.Lock(), 0))
            self._locks[key] = (lock, refs + 1)

        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                lock, refs = self._locks[key]
                if refs <= 1:
                    del self._locks[key]
                else:
                    self._locks[key] = (lock, refs - 1)

    def active_keys(self) -> list[str]:
        with self._guard:
            return list(self._locks.keys())


user_sync_locks = KeyedLocks()
