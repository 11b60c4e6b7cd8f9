# app/utils/retry.py
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    stop_after_delay,
    wait_exponential,
)
import redis

from app.domain.errors import StorageConflict, StorageTimeout
from app.utils.settings import OPERATION_TIMEOUT_SECONDS, STORAGE_RETRY_ATTEMPTS


def storage_retry():
    # kazda proba jest rollbackowana przez repo zanim poleci wyjatek,
    # wiec ponowienie nie zdubluje zmiany stanu
    return retry(
        reraise=True,
        stop=stop_after_attempt(STORAGE_RETRY_ATTEMPTS) | stop_after_delay(OPERATION_TIMEOUT_SECONDS),
        wait=wait_exponential(multiplier=0.05, min=0.05, max=1),
        retry=retry_if_exception_type((StorageTimeout, StorageConflict)),
    )


def redis_retry():
    return retry(
        reraise=True,
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
        retry=retry_if_exception_type(redis.RedisError),
    )
