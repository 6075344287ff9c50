"""Optional Redis-backed log of executed actions."""

from __future__ import annotations

import json
import time
from typing import Any, Dict, List, Optional

import redis  # type: ignore
import structlog

from .actions import Action, ActionResult
from .config import AidConfig

logger = structlog.get_logger(__name__)


class OperationLog:
    """Write-only sink for (prompt, action, result, timestamp) records."""

    def record(
        self,
        prompt: str,
        action: Action,
        result: ActionResult,
        timestamp: Optional[float] = None,
    ) -> None:
        raise NotImplementedError


class NullOperationLog(OperationLog):
    """Discards every record."""

    def record(self, prompt, action, result, timestamp=None) -> None:
        return None


class RedisOperationLog(OperationLog):
    """Capped Redis list of operation records.

    Data model:
    - key: ``config.oplog_key`` (newest first)
    - value: JSON { prompt, action, result, created_at }
    """

    def __init__(self, config: AidConfig, client: Optional[redis.Redis] = None) -> None:
        self.config = config
        self.key = config.oplog_key
        self.max_entries = int(config.oplog_max_entries)
        self._redis = client or redis.Redis.from_url(
            config.redis_url, db=config.redis_db, decode_responses=True
        )

    def record(
        self,
        prompt: str,
        action: Action,
        result: ActionResult,
        timestamp: Optional[float] = None,
    ) -> None:
        payload = {
            "prompt": prompt,
            "action": action.to_dict(),
            "result": result.to_dict(),
            "created_at": timestamp if timestamp is not None else time.time(),
        }
        self._redis.lpush(self.key, json.dumps(payload))
        self._redis.ltrim(self.key, 0, self.max_entries - 1)

    def recent(self, limit: int = 20) -> List[Dict[str, Any]]:
        """Most recent records, newest first."""
        out: List[Dict[str, Any]] = []
        for raw in self._redis.lrange(self.key, 0, max(0, limit - 1)) or []:
            try:
                out.append(json.loads(raw))
            except ValueError:
                logger.warning("oplog_bad_record", key=self.key)
        return out


def build_operation_log(config: AidConfig) -> OperationLog:
    """Redis sink when enabled in config, otherwise a null sink."""
    if config.oplog_enabled:
        logger.info("oplog_enabled", redis_url=config.redis_url, key=config.oplog_key)
        return RedisOperationLog(config)
    return NullOperationLog()
