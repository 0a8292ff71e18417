# app/core/locks.py
# Per-key asyncio locks. Serialize check-then-write sections (hiring on one job,
# withdrawals of one freelancer) inside this process; the database guards
# (compare-and-swap updates, row locks, unique constraints) cover other processes.
import asyncio
from contextlib import asynccontextmanager
from typing import Dict


class KeyedLock:
    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiters: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                # 這個 key 沒有其他人在排隊
                del self._waiters[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


job_locks = KeyedLock()
withdrawal_locks = KeyedLock()
