"""
Shared client instances — Redis.

The connection is lazy (redis-py connects on first command), so importing this
module is always safe even when Redis is unreachable during tests.
"""
import logging
import redis

from leadsync.config import REDIS_URL

logger = logging.getLogger('leadsync.extensions')

redis_client = redis.from_url(REDIS_URL, decode_responses=True)
