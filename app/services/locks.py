# app/services/locks.py
import asyncio
import weakref


class UserLocks:
    """
    One asyncio.Lock per user id.

    Shared by the session reconciler and the consistency repairer so that
    their read-then-insert paths for the same user never interleave.

    Locks are held weakly: an entry lives only while some task holds or
    waits on the lock, so the registry does not grow with every user id
    the process has seen.
    """

    def __init__(self):
        self._locks: weakref.WeakValueDictionary = weakref.WeakValueDictionary()

    def __len__(self) -> int:
        return len(self._locks)

    def for_user(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock
