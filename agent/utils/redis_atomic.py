"""
Atomic Redis operations for the PostCare scheduling system

Every schedule status transition is a Lua script of the form
"update where status = X (and claim token = T) set status = Y", so the same
logic is safe with several dispatchers, API processes and workers sharing one
Redis.
"""
import logging
from typing import List, Optional

import redis

logger = logging.getLogger("redis-atomic")

# Lua script for atomically claiming due schedules
CLAIM_DUE_SCHEDULES_SCRIPT = """
-- KEYS[1] time index, KEYS[2] schedule hash prefix, KEYS[3] claim lease index
-- ARGV[1] now timestamp, ARGV[2] limit, ARGV[3] now iso, ARGV[4] lease expiry timestamp, ARGV[5] claim token
local due = redis.call('ZRANGEBYSCORE', KEYS[1], '-inf', ARGV[1], 'LIMIT', 0, tonumber(ARGV[2]))

local claimed = {}
for i = 1, #due do
    local schedule_id = due[i]
    local schedule_key = KEYS[2] .. schedule_id

    local status = redis.call('HGET', schedule_key, 'status')
    local token = redis.call('HGET', schedule_key, 'claim_token')

    -- Only claim if still pending and nobody else owns it
    if status == 'pending' and (not token or token == '') then
        redis.call('HSET', schedule_key, 'claim_token', ARGV[5], 'claimed_at', ARGV[3], 'updated_at', ARGV[3])
        redis.call('ZADD', KEYS[3], ARGV[4], schedule_id)
        table.insert(claimed, schedule_id)
    end

    -- Claimed, terminal or missing schedules leave the time index for good
    redis.call('ZREM', KEYS[1], schedule_id)
end

return claimed
"""

# Lua script for the terminal transition of a claimed schedule
FINALIZE_CLAIM_SCRIPT = """
-- KEYS[1] schedule hash, KEYS[2] claim lease index
-- ARGV[1] claim token, ARGV[2] new status, ARGV[3] now iso, ARGV[4] provider call id,
-- ARGV[5] error message, ARGV[6] schedule id
local status = redis.call('HGET', KEYS[1], 'status')
local token = redis.call('HGET', KEYS[1], 'claim_token')

if status ~= 'pending' or token ~= ARGV[1] then
    return 0  -- Lost the claim (reaped) or already terminal
end

redis.call('HSET', KEYS[1], 'status', ARGV[2], 'completed_at', ARGV[3], 'updated_at', ARGV[3], 'claim_token', '')
if ARGV[4] ~= '' then
    redis.call('HSET', KEYS[1], 'provider_call_id', ARGV[4])
end
if ARGV[5] ~= '' then
    redis.call('HSET', KEYS[1], 'error_message', ARGV[5])
end
redis.call('ZREM', KEYS[2], ARGV[6])

return 1
"""

# Lua script for extending a held claim right before its call is placed
RENEW_CLAIM_SCRIPT = """
-- KEYS[1] schedule hash, KEYS[2] claim lease index
-- ARGV[1] claim token, ARGV[2] new lease expiry timestamp, ARGV[3] schedule id
local status = redis.call('HGET', KEYS[1], 'status')
local token = redis.call('HGET', KEYS[1], 'claim_token')

if status ~= 'pending' or token ~= ARGV[1] then
    return 0
end

redis.call('ZADD', KEYS[2], ARGV[2], ARGV[3])
return 1
"""

# Lua script for cancelling an unclaimed pending schedule
CANCEL_SCHEDULE_SCRIPT = """
-- KEYS[1] schedule hash, KEYS[2] time index
-- ARGV[1] now iso, ARGV[2] schedule id
local status = redis.call('HGET', KEYS[1], 'status')
if not status then
    return 'missing'
end
if status ~= 'pending' then
    return status
end

local token = redis.call('HGET', KEYS[1], 'claim_token')
if token and token ~= '' then
    return 'dispatching'
end

redis.call('HSET', KEYS[1], 'status', 'cancelled', 'completed_at', ARGV[1], 'updated_at', ARGV[1])
redis.call('ZREM', KEYS[2], ARGV[2])

return 'ok'
"""

# Lua script for failing claims whose dispatcher never finalized them
REAP_EXPIRED_CLAIMS_SCRIPT = """
-- KEYS[1] claim lease index, KEYS[2] schedule hash prefix
-- ARGV[1] now timestamp, ARGV[2] now iso, ARGV[3] error message
local expired = redis.call('ZRANGEBYSCORE', KEYS[1], '-inf', ARGV[1])

local reaped = {}
for i = 1, #expired do
    local schedule_id = expired[i]
    local schedule_key = KEYS[2] .. schedule_id

    local status = redis.call('HGET', schedule_key, 'status')
    local token = redis.call('HGET', schedule_key, 'claim_token')

    if status == 'pending' and token and token ~= '' then
        redis.call('HSET', schedule_key, 'status', 'failed', 'error_message', ARGV[3],
                   'completed_at', ARGV[2], 'updated_at', ARGV[2], 'claim_token', '')
        table.insert(reaped, schedule_id)
    end

    redis.call('ZREM', KEYS[1], schedule_id)
end

return reaped
"""

# Lua script for writing a summary only if the transcript it was built from is current
SET_SUMMARY_SCRIPT = """
-- KEYS[1] call log hash
-- ARGV[1] transcript, ARGV[2] summary, ARGV[3] now iso
if redis.call('HGET', KEYS[1], 'transcript') ~= ARGV[1] then
    return 0
end

redis.call('HSET', KEYS[1], 'summary', ARGV[2], 'updated_at', ARGV[3])
return 1
"""


class AtomicRedisOperations:
    """
    Provides atomic Redis operations to prevent race conditions
    """

    def __init__(self, redis_client: redis.Redis, schedules_key: str = "postop:call_schedules"):
        """
        Initialize with Redis client

        Args:
            redis_client: Redis client instance (decode_responses=True)
            schedules_key: Key prefix for schedule hashes and indexes
        """
        self.redis = redis_client
        self.schedules_key = schedules_key
        self.by_time_key = f"{schedules_key}:by_time"
        self.claims_key = f"{schedules_key}:claims"

        # Register Lua scripts
        self._claim_script = self.redis.register_script(CLAIM_DUE_SCHEDULES_SCRIPT)
        self._finalize_script = self.redis.register_script(FINALIZE_CLAIM_SCRIPT)
        self._renew_script = self.redis.register_script(RENEW_CLAIM_SCRIPT)
        self._cancel_script = self.redis.register_script(CANCEL_SCHEDULE_SCRIPT)
        self._reap_script = self.redis.register_script(REAP_EXPIRED_CLAIMS_SCRIPT)
        self._summary_script = self.redis.register_script(SET_SUMMARY_SCRIPT)

    def _schedule_key(self, schedule_id: str) -> str:
        return f"{self.schedules_key}:{schedule_id}"

    def claim_due_schedules(
        self,
        current_timestamp: float,
        current_iso: str,
        lease_expiry_timestamp: float,
        claim_token: str,
        limit: int = 50
    ) -> List[str]:
        """
        Atomically claim pending schedules that are due

        Args:
            current_timestamp: Schedules at or before this instant are due
            current_iso: Timestamp recorded as claimed_at
            lease_expiry_timestamp: When an unfinished claim may be reaped
            claim_token: Token identifying this dispatcher run
            limit: Maximum number of schedules to claim

        Returns:
            List of schedule IDs owned by this claim token
        """
        try:
            claimed = self._claim_script(
                keys=[self.by_time_key, f"{self.schedules_key}:", self.claims_key],
                args=[current_timestamp, limit, current_iso, lease_expiry_timestamp, claim_token]
            )
        except redis.RedisError as e:
            logger.error(f"Error in atomic claim: {e}")
            return []

        if claimed:
            logger.info(f"Atomically claimed {len(claimed)} due schedules")
        return list(claimed)

    def finalize_claim(
        self,
        schedule_id: str,
        claim_token: str,
        new_status: str,
        current_iso: str,
        provider_call_id: str = "",
        error_message: str = ""
    ) -> bool:
        """
        Move a claimed schedule out of pending

        Returns:
            True if the claim was still held and the transition happened
        """
        result = self._finalize_script(
            keys=[self._schedule_key(schedule_id), self.claims_key],
            args=[claim_token, new_status, current_iso, provider_call_id or "", error_message or "", schedule_id]
        )

        success = bool(result)
        if success:
            logger.info(f"Schedule {schedule_id}: pending -> {new_status}")
        else:
            logger.warning(f"Schedule {schedule_id}: claim lost before transition to {new_status}")
        return success

    def renew_claim(self, schedule_id: str, claim_token: str, lease_expiry_timestamp: float) -> bool:
        """
        Push a held claim's lease expiry forward

        Returns:
            False if the schedule was reaped or finalized since it was claimed
        """
        renewed = bool(self._renew_script(
            keys=[self._schedule_key(schedule_id), self.claims_key],
            args=[claim_token, lease_expiry_timestamp, schedule_id]
        ))
        if not renewed:
            logger.warning(f"Schedule {schedule_id}: claim no longer held, lease not renewed")
        return renewed

    def cancel_schedule(self, schedule_id: str, current_iso: str) -> str:
        """
        Cancel an unclaimed pending schedule

        Returns:
            'ok' on success, 'missing', 'dispatching' or the current terminal status otherwise
        """
        return self._cancel_script(
            keys=[self._schedule_key(schedule_id), self.by_time_key],
            args=[current_iso, schedule_id]
        )

    def reap_expired_claims(self, current_timestamp: float, current_iso: str, error_message: str) -> List[str]:
        """
        Fail schedules whose dispatcher claimed them but never finished

        Returns:
            List of reaped schedule IDs
        """
        reaped = self._reap_script(
            keys=[self.claims_key, f"{self.schedules_key}:"],
            args=[current_timestamp, current_iso, error_message]
        )
        if reaped:
            logger.warning(f"Reaped {len(reaped)} expired dispatch claims: {', '.join(reaped)}")
        return list(reaped)

    def set_summary_if_transcript_matches(
        self,
        call_log_key: str,
        transcript: str,
        summary: str,
        current_iso: str
    ) -> bool:
        """Store a summary unless a newer transcript arrived while it was generated"""
        return bool(self._summary_script(keys=[call_log_key], args=[transcript, summary, current_iso]))


def create_atomic_redis_ops(
    redis_client: Optional[redis.Redis] = None,
    schedules_key: str = "postop:call_schedules"
) -> AtomicRedisOperations:
    """
    Factory function to create AtomicRedisOperations instance

    Args:
        redis_client: Redis client instance (defaults to creating new one)
        schedules_key: Key prefix for schedules

    Returns:
        AtomicRedisOperations instance
    """
    if redis_client is None:
        from config.redis import create_redis_connection
        redis_client = create_redis_connection()

    return AtomicRedisOperations(redis_client, schedules_key)
