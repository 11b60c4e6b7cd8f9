import math
import threading
import uuid
from contextlib import contextmanager
from functools import lru_cache

import redis
from redis.exceptions import RedisError
from tenacity import RetryError, retry, retry_if_result, stop_after_delay, wait_fixed

from app.domain.errors import StorageTimeout
from app.utils.retry import redis_retry
from app.utils.settings import LOCK_BACKEND, REDIS_URL, USER_LOCK_TTL_SECONDS
from app.utils.logging import get_logger

logger = get_logger(__name__)

#LUA porownaj i usun, atomicity
_RELEASE_LUA = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
else
    return 0
end
"""

#redis wykonuje atomowo przez lua, skrypt dziala jako jedna nieprzerywalna operacja
#nie mozna wcisnac sie miedzy GET a DEL, wiec tylko wlasciciel tokenu zwalnia locka


class LockService:
    """
    -serializacja operacji na koszyku jednego uzytkownika (double click)
    -lock w redisie z TTL, zeby padniety worker nie blokowal koszyka na zawsze
    -TTL zawsze dluzszy niz budzet operacji, inaczej lock wygasa w trakcie pracy
    -zwalnianie atomowo przez lua
    """

    def __init__(self, url: str | None = None, ttl: int = USER_LOCK_TTL_SECONDS):
        self.redis = redis.Redis.from_url(
            url or REDIS_URL,
            decode_responses=True,
        )
        self.ttl = ttl

    @staticmethod
    def _key(user_id: int) -> str:
        return f"user:{user_id}:cart:lock"

    def ttl_for(self, timeout: float) -> int:
        # operacja trwa najwyzej timeout sekund, lock zyje co najmniej sekunde dluzej
        return max(self.ttl, math.ceil(timeout) + 1)

    @redis_retry()
    def acquire_user_lock(self, user_id: int, token: str, ttl: int | None = None) -> bool:
        #SET user:1:cart:lock "<token>" NX EX 30
        return bool(
            self.redis.set(
                name=self._key(user_id),
                value=token,
                nx=True,
                ex=ttl or self.ttl,
            )
        )

    @redis_retry()
    def release_user_lock(self, user_id: int, token: str) -> bool:
        res = self.redis.eval(_RELEASE_LUA, 1, self._key(user_id), token)
        return bool(res)

    @contextmanager
    def hold(self, user_id: int, timeout: float):
        token = uuid.uuid4().hex
        ttl = self.ttl_for(timeout)

        # czekamy na locka co 50ms, maksymalnie timeout sekund
        waiting = retry(
            stop=stop_after_delay(timeout),
            wait=wait_fixed(0.05),
            retry=retry_if_result(lambda acquired: not acquired),
        )
        try:
            waiting(self.acquire_user_lock)(user_id, token, ttl)
        except RetryError as e:
            raise StorageTimeout(f"Cart of user {user_id} is busy, try again") from e
        except RedisError as e:
            raise StorageTimeout(f"Lock backend unavailable: {e}") from e

        logger.info(f"Acquired cart lock {self._key(user_id)}")
        try:
            yield
        finally:
            try:
                if not self.release_user_lock(user_id, token):
                    logger.warning(f"Cart lock {self._key(user_id)} expired before release")
            except RedisError as e:
                # lock i tak wygasnie po TTL
                logger.warning(f"Failed to release cart lock {self._key(user_id)}: {e}")


class LocalLockService:
    """
    Lock per uzytkownik w obrebie jednego procesu (testy, jeden worker).
    Wpis trzyma licznik chetnych; ostatni wychodzacy usuwa lock ze slownika.
    """

    def __init__(self):
        self._guard = threading.Lock()
        # user_id -> [lock, ilu trzyma albo czeka]
        self._locks = {}

    def _checkout(self, user_id: int) -> threading.Lock:
        with self._guard:
            entry = self._locks.setdefault(user_id, [threading.Lock(), 0])
            entry[1] += 1
            return entry[0]

    def _checkin(self, user_id: int) -> None:
        with self._guard:
            entry = self._locks[user_id]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[user_id]

    @contextmanager
    def hold(self, user_id: int, timeout: float):
        lock = self._checkout(user_id)
        try:
            if not lock.acquire(timeout=timeout):
                raise StorageTimeout(f"Cart of user {user_id} is busy, try again")
            try:
                yield
            finally:
                lock.release()
        finally:
            self._checkin(user_id)


@lru_cache(maxsize=1)
def get_lock_service():
    if LOCK_BACKEND == "local":
        return LocalLockService()
    return LockService()
