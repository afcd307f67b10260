from datetime import datetime, timezone
import json
import logging
from typing import Any, Optional

import redis

from app.database import SessionFactory, SessionLocal, session_scope
from app.models.db_operation import add_record

LOGGER = logging.getLogger(__name__)


class AuditEmitter:
    """Queues privileged actions on a Redis list; ``drain`` persists them."""

    def __init__(
        self,
        client: redis.Redis,
        queue_key: str = "audit:queue",
        session_factory: SessionFactory = SessionLocal,
    ) -> None:
        self._client = client
        self._queue_key = queue_key
        self._session_factory = session_factory

    def emit(
        self,
        action: str,
        *,
        user_id: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> bool:
        record = {
            "user_id": user_id,
            "action": action,
            "entity_type": entity_type,
            "entity_id": None if entity_id is None else str(entity_id),
            "details": details or {},
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        try:
            self._client.lpush(self._queue_key, json.dumps(record, default=str))
        except redis.RedisError:
            LOGGER.error("Failed to queue audit record action=%s entity_id=%s", action, entity_id)
            return False
        return True

    def drain(self, max_items: int = 50) -> int:
        records = []
        for _ in range(max_items):
            raw = self._client.rpop(self._queue_key)
            if raw is None:
                break
            try:
                records.append(json.loads(raw))
            except ValueError:
                LOGGER.error("Dropping malformed audit record: %s", raw)
        if not records:
            return 0

        try:
            with session_scope(self._session_factory) as session:
                for record in records:
                    add_record(
                        session,
                        "audit_log",
                        user_id=record.get("user_id"),
                        action=record["action"],
                        entity_type=record.get("entity_type"),
                        entity_id=record.get("entity_id"),
                        details=record.get("details"),
                        created_at=_parse_timestamp(record.get("timestamp")),
                    )
        except Exception:
            # Put the batch back so a later drain retries it.
            for record in reversed(records):
                self._client.rpush(self._queue_key, json.dumps(record, default=str))
            raise
        return len(records)


def _parse_timestamp(raw_value: Optional[str]) -> datetime:
    if not raw_value:
        return datetime.now(timezone.utc)
    try:
        return datetime.fromisoformat(raw_value.replace("Z", "+00:00"))
    except ValueError:
        return datetime.now(timezone.utc)
