from collections.abc import Iterator
from contextlib import contextmanager
from threading import Lock

from sqlalchemy.orm import Session

from clinic_scheduler.models.user import User


class ProviderLockRegistry:
    """Hands out one mutex per provider id.

    Every check-then-write sequence over a provider's appointments or waitlist
    runs while holding that provider's mutex, so two requests for the same
    slot are serialized while different providers never contend.
    """

    def __init__(self) -> None:
        self._registry_lock = Lock()
        self._locks: dict[int, Lock] = {}

    def lock_for(self, provider_id: int) -> Lock:
        with self._registry_lock:
            lock = self._locks.get(provider_id)
            if lock is None:
                lock = Lock()
                self._locks[provider_id] = lock
            return lock

    @contextmanager
    def hold(self, provider_id: int) -> Iterator[None]:
        lock = self.lock_for(provider_id)
        with lock:
            yield


provider_locks = ProviderLockRegistry()


@contextmanager
def provider_transaction(db: Session, provider_id: int) -> Iterator[None]:
    """Serialize a unit of work on ``provider_id`` and commit it atomically.

    On PostgreSQL the provider row is also locked with ``SELECT ... FOR UPDATE``
    so writers in other processes queue behind the same key. Any exception
    rolls the session back before the mutex is released.
    """
    with provider_locks.hold(provider_id):
        try:
            if db.get_bind().dialect.name == 'postgresql':
                db.query(User.id).filter(User.id == provider_id).with_for_update().first()
            yield
            db.commit()
        except BaseException:
            db.rollback()
            raise
