# workflow_registry.py - Redis-based hierarchy storage
# This file contains logic for storing and retrieving workflow hierarchy records using Redis.

import redis
import json
import logging
from typing import Dict, List, Optional, Any

from pydantic import BaseModel

from .hierarchy_store import (
    HierarchyStore, ENTITY_TYPES, PARENT_LINKS,
    sort_children, child_kind_of, completed_value, is_completed, is_closed
)
from .config import settings

logger = logging.getLogger(__name__)

class WorkflowRegistry(HierarchyStore):
    """Hierarchy store backed by Redis.

    Records are JSON strings under ``hierarchy:{kind}:{id}``; each parent keeps a
    set of child ids under ``hierarchy:{kind}:children:{parent_id}``.
    """

    def __init__(self, redis_client: Optional[redis.Redis] = None):
        self.redis_client = redis_client or redis.Redis(
            host=settings.redis_host,
            port=settings.redis_port,
            db=settings.redis_db,
            password=settings.redis_password,
            decode_responses=True
        )
        self.max_retries = settings.cascade_max_retries

    @staticmethod
    def _key(kind: str, entity_id: str) -> str:
        return f"hierarchy:{kind}:{entity_id}"

    @staticmethod
    def _children_key(kind: str, parent_id: str) -> str:
        return f"hierarchy:{kind}:children:{parent_id}"

    @staticmethod
    def _dump(entity: BaseModel) -> str:
        return json.dumps(entity.model_dump(mode="json"))

    @staticmethod
    def _load(kind: str, raw: Optional[str]) -> Optional[BaseModel]:
        if not raw:
            return None
        return ENTITY_TYPES[kind].model_validate(json.loads(raw))

    async def get(self, kind: str, entity_id: str) -> Optional[BaseModel]:
        return self._load(kind, self.redis_client.get(self._key(kind, entity_id)))

    async def list_children(self, kind: str, parent_id: str) -> List[BaseModel]:
        child_ids = self.redis_client.smembers(self._children_key(kind, parent_id))
        children = []
        for child_id in child_ids:
            child = self._load(kind, self.redis_client.get(self._key(kind, child_id)))
            if child:
                children.append(child)
        return sort_children(children)

    async def save(self, kind: str, entity: BaseModel) -> BaseModel:
        pipe = self.redis_client.pipeline()
        pipe.set(self._key(kind, entity.id), self._dump(entity))
        if kind in PARENT_LINKS:
            _, parent_field = PARENT_LINKS[kind]
            pipe.sadd(self._children_key(kind, getattr(entity, parent_field)), entity.id)
        pipe.execute()
        logger.debug(f"Stored {kind} {entity.id}")
        return entity

    async def update(self, kind: str, entity_id: str, fields: Dict[str, Any]) -> Optional[BaseModel]:
        key = self._key(kind, entity_id)
        for attempt in range(self.max_retries):
            with self.redis_client.pipeline() as pipe:
                try:
                    pipe.watch(key)
                    current = self._load(kind, pipe.get(key))
                    if current is None:
                        pipe.unwatch()
                        return None

                    data = current.model_dump()
                    data.update(fields)
                    updated = ENTITY_TYPES[kind].model_validate(data)

                    pipe.multi()
                    pipe.set(key, self._dump(updated))
                    pipe.execute()
                    return updated
                except redis.WatchError:
                    logger.info(f"Concurrent write on {key}, retrying update (attempt {attempt + 1})")
        raise redis.WatchError(f"Could not update {key} after {self.max_retries} attempts")

    async def complete_if_ready(self, kind: str, entity_id: str) -> bool:
        """Optimistic check-and-set: watch the node, its child index and every child,
        then write the node status only if nothing changed underneath."""
        key = self._key(kind, entity_id)
        child_kind = child_kind_of(kind)
        children_key = self._children_key(child_kind, entity_id)

        for attempt in range(self.max_retries):
            with self.redis_client.pipeline() as pipe:
                try:
                    pipe.watch(key, children_key)
                    current = self._load(kind, pipe.get(key))
                    if current is None or is_closed(current):
                        pipe.unwatch()
                        return False

                    child_ids = pipe.smembers(children_key)
                    child_keys = [self._key(child_kind, child_id) for child_id in child_ids]
                    if child_keys:
                        pipe.watch(*child_keys)
                    children = [self._load(child_kind, pipe.get(child_key)) for child_key in child_keys]
                    children = [c for c in children if c is not None]

                    if not children or not all(is_completed(c) for c in children):
                        pipe.unwatch()
                        return False

                    data = current.model_dump()
                    data["status"] = completed_value(kind)
                    updated = ENTITY_TYPES[kind].model_validate(data)

                    pipe.multi()
                    pipe.set(key, self._dump(updated))
                    pipe.execute()
                    return True
                except redis.WatchError:
                    logger.info(f"Concurrent write under {kind} {entity_id}, re-checking (attempt {attempt + 1})")
        logger.error(f"Gave up completing {kind} {entity_id} after {self.max_retries} attempts")
        return False

    def ping(self) -> bool:
        return bool(self.redis_client.ping())
