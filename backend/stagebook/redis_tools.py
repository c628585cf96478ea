# backend/stagebook/redis_tools.py
import os
import logging
import secrets

import redis.asyncio as redis_client

from stagebook import config

logger = logging.getLogger(__name__)

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

# decode_responses so scripts and GETs hand back str instead of bytes
redis = redis_client.from_url(REDIS_URL, encoding="utf-8", decode_responses=True)

# Lua script for atomic compare-and-delete with an attempt budget.
# KEYS[1] = code key, KEYS[2] = attempts key
# ARGV[1] = submitted code, ARGV[2] = max attempts
VERIFY_OTP = """
local code = redis.call("GET", KEYS[1])
if not code then
  return -1
end
if code == ARGV[1] then
  redis.call("DEL", KEYS[1], KEYS[2])
  return 1
end
local attempts = redis.call("INCR", KEYS[2])
local ttl = redis.call("PTTL", KEYS[1])
if ttl > 0 then
  redis.call("PEXPIRE", KEYS[2], ttl)
end
if attempts >= tonumber(ARGV[2]) then
  redis.call("DEL", KEYS[1], KEYS[2])
  return -2
end
return 0
"""

OTP_VERIFIED = 1
OTP_MISMATCH = 0
OTP_MISSING = -1
OTP_BURNED = -2


def otp_key(channel: str, destination: str) -> str:
    return f"otp:{channel}:{destination.strip().lower()}"


def generate_otp(length: int = 6) -> str:
    return "".join(secrets.choice("0123456789") for _ in range(length))


async def store_otp(channel: str, destination: str, code: str, ttl: int | None = None) -> None:
    """
    Save a fresh code for (channel, destination), replacing any earlier one and
    resetting its attempt counter.
    """
    key = otp_key(channel, destination)
    ttl = ttl or config.OTP_TTL_SECONDS
    await redis.set(key, code, ex=ttl)
    await redis.delete(f"{key}:attempts")


async def verify_otp(channel: str, destination: str, code: str, max_attempts: int | None = None) -> int:
    """
    Check a submitted code. A match deletes it so it cannot be replayed.
    Returns one of OTP_VERIFIED, OTP_MISMATCH, OTP_MISSING (expired or never
    issued), OTP_BURNED (too many wrong guesses, code discarded).
    """
    key = otp_key(channel, destination)
    max_attempts = max_attempts or config.OTP_MAX_ATTEMPTS
    res = await redis.eval(VERIFY_OTP, 2, key, f"{key}:attempts", str(code), str(max_attempts))
    return int(res)
