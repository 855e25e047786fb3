"""
Per-agency sync lease backed by Redis.

SET NX EX acquires; a compare-and-delete script releases, so a pass whose
lease expired cannot drop a lease now held by another pass. Long passes call
extend() as they go, which resets the TTL only while the token still matches.
If Redis is down the lease is skipped and the sync proceeds unguarded.
"""
import logging
import uuid
from contextlib import contextmanager

from leadsync.config import SYNC_LOCK_TTL

logger = logging.getLogger('sync.lock')

RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""

EXTEND_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('pexpire', KEYS[1], ARGV[2])
end
return 0
"""


class SyncAlreadyRunningError(Exception):
    """Raised when another sync pass holds the agency's lease."""
    def __init__(self, agency_id):
        self.agency_id = agency_id
        super().__init__(f"A Trello sync is already running for agency {agency_id}")


class SyncLock:
    PREFIX = 'sync:lock'

    def __init__(self, redis_client, ttl: int = SYNC_LOCK_TTL):
        self.redis = redis_client
        self.ttl = ttl

    def _key(self, agency_id):
        return f'{self.PREFIX}:{agency_id}'

    def acquire(self, agency_id):
        """Return a lease token, or None when Redis is unavailable."""
        token = uuid.uuid4().hex
        try:
            acquired = self.redis.set(self._key(agency_id), token, nx=True, ex=self.ttl)
        except Exception as e:
            logger.warning("Sync lease unavailable for %s (%s) — running unguarded", agency_id, e)
            return None
        if not acquired:
            raise SyncAlreadyRunningError(agency_id)
        return token

    def release(self, agency_id, token):
        if token is None:
            return False
        try:
            return bool(self.redis.eval(RELEASE_SCRIPT, 1, self._key(agency_id), token))
        except Exception as e:
            logger.warning("Failed to release sync lease for %s: %s", agency_id, e)
            return False

    def extend(self, agency_id, token) -> bool:
        """Reset the lease TTL if `token` still holds it. False when the lease was lost."""
        if token is None:
            return False
        try:
            extended = bool(self.redis.eval(EXTEND_SCRIPT, 1, self._key(agency_id), token, self.ttl * 1000))
        except Exception as e:
            logger.warning("Failed to extend sync lease for %s: %s", agency_id, e)
            return False
        if not extended:
            logger.warning("Sync lease for %s expired or was taken over mid-pass", agency_id)
        return extended

    def is_locked(self, agency_id) -> bool:
        try:
            return self.redis.get(self._key(agency_id)) is not None
        except Exception:
            return False

    @contextmanager
    def hold(self, agency_id):
        token = self.acquire(agency_id)
        try:
            yield token
        finally:
            self.release(agency_id, token)
