"""
Read-through cache for reference entities (material types, locations, users...).

Each kind gets its own partition. Lookups by id cache the entity; lookups by
name cache the whole query result and return its first element. A name that
matches nothing raises NotFound and is never cached, so the next call asks
the remote service again.

The cache is shared by every running job. Two jobs missing the same key at
the same time may both fetch it; whichever stores last wins.
"""

import threading
from collections import Counter
from typing import Any, Dict, List, Optional, Protocol, Tuple

from .clients.common import exact_match
from .clients.reference import get_kind
from .errors import NotFound
from .logger import get_logger

logger = get_logger()

_MISSING = object()


class ReferenceLookup(Protocol):
    def get_by_id(self, kind: str, entity_id: str) -> Any: ...

    def get_by_query(self, kind: str, expression: str) -> List[Any]: ...


class ReferenceDataCache:
    """
    Args:
        lookup: remote lookup (ReferenceClient or anything with the same two methods)
    """

    def __init__(self, lookup: ReferenceLookup):
        self.lookup = lookup
        self._partitions: Dict[str, Dict[Tuple[str, str], Any]] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0
        self._remote_calls: Counter = Counter()

    def resolve_by_id(self, kind: str, entity_id: str) -> Any:
        """Return the entity with this id, fetching it on a miss.

        Raises:
            RemoteUnavailable / NotFound: from the remote lookup, nothing cached
        """
        key = ("id", entity_id)
        cached = self._get(kind, key)
        if cached is not _MISSING:
            return cached

        self._count_remote(kind, key)
        entity = self.lookup.get_by_id(kind, entity_id)
        self._put(kind, key, entity)
        return entity

    def resolve_by_name(self, kind: str, name: str) -> Any:
        """Return the first entity whose name field equals name exactly.

        Raises:
            NotFound: when the query matched nothing (not cached)
            RemoteUnavailable: from the remote lookup
        """
        key = ("name", name)
        collection = self._get(kind, key)
        if collection is _MISSING:
            ref = get_kind(kind)
            self._count_remote(kind, key)
            collection = list(self.lookup.get_by_query(kind, exact_match(ref.name_field, name)))
            if not collection:
                logger.debug("Reference lookup matched nothing", kind=kind, name=name)
                raise NotFound(ref.label, name)
            self._put(kind, key, collection)
        return collection[0]

    def remote_call_count(self, kind: str, by: str, key: str) -> int:
        """How many remote calls were made for (kind, by, key); by is "id" or "name"."""
        with self._lock:
            return self._remote_calls[(kind, by, key)]

    def clear(self, kind: Optional[str] = None) -> None:
        with self._lock:
            if kind is None:
                self._partitions.clear()
            else:
                self._partitions.pop(kind, None)

    def size(self, kind: str) -> int:
        with self._lock:
            return len(self._partitions.get(kind, {}))

    def _get(self, kind: str, key: Tuple[str, str]) -> Any:
        with self._lock:
            value = self._partitions.get(kind, {}).get(key, _MISSING)
            if value is _MISSING:
                self.misses += 1
            else:
                self.hits += 1
        if value is _MISSING:
            logger.record_cache_miss()
        else:
            logger.record_cache_hit()
        return value

    def _put(self, kind: str, key: Tuple[str, str], value: Any) -> None:
        with self._lock:
            self._partitions.setdefault(kind, {})[key] = value

    def _count_remote(self, kind: str, key: Tuple[str, str]) -> None:
        with self._lock:
            self._remote_calls[(kind, key[0], key[1])] += 1
