"""
Dispatch Requests
Hands "notify this responder" requests to the external notification service
through a bounded redis list. Delivery itself happens elsewhere.
"""

import json
import logging
from dataclasses import dataclass, asdict, field
from typing import Dict, List, Optional

import redis

from alerting_core import constants
from alerting_core.metrics import DISPATCH_REQUESTS, increment_counter

logger = logging.getLogger(__name__)


@dataclass
class DispatchRequest:
    alert_id: str
    assignee: str
    channel_set: List[str] = field(default_factory=list)
    expected_response_time: int = constants.DEFAULT_EXPECTED_RESPONSE_MINUTES
    assignment_level: int = 0
    severity: Optional[str] = None
    team_id: Optional[str] = None

    def to_json(self) -> str:
        return json.dumps(asdict(self))


class DispatchQueue:
    """Newest-first redis list trimmed to a maximum length"""

    def __init__(self, redis_client, key: str = constants.DISPATCH_QUEUE_KEY,
                 max_length: int = constants.DISPATCH_QUEUE_MAX_LENGTH):
        self.redis = redis_client
        self.key = key
        self.max_length = max_length

    def push(self, request: DispatchRequest) -> bool:
        try:
            self.redis.lpush(self.key, request.to_json())
            self.redis.ltrim(self.key, 0, self.max_length - 1)
        except redis.exceptions.RedisError as e:
            increment_counter(DISPATCH_REQUESTS, {"status": "failed"})
            logger.error(
                f"[DISPATCH] Failed to queue notification for alert {request.alert_id} "
                f"to {request.assignee}: {e}"
            )
            return False

        increment_counter(DISPATCH_REQUESTS, {"status": "queued"})
        logger.info(
            f"[DISPATCH] Queued alert {request.alert_id} -> {request.assignee} "
            f"via {','.join(request.channel_set) or 'default'} (level={request.assignment_level})"
        )
        return True

    def pending(self, limit: int = 100) -> List[Dict]:
        raw = self.redis.lrange(self.key, 0, limit - 1)
        return [json.loads(item) for item in raw]
