import json
from typing import Optional, Tuple


def _key(operator_id: str, idem_key: str) -> str:
    return f"idem:{operator_id}:{idem_key}"


async def get_cached_response(redis, operator_id: str, idem_key: str) -> Optional[Tuple[int, dict]]:
    raw = await redis.get(_key(operator_id, idem_key))
    if not raw:
        return None
    cached = json.loads(raw)
    return cached["status_code"], cached["body"]


async def set_cached_response(redis, operator_id: str, idem_key: str, status_code: int, body: dict, ttl_seconds: int = 300):
    payload = json.dumps({"status_code": status_code, "body": body})
    await redis.setex(_key(operator_id, idem_key), ttl_seconds, payload)
