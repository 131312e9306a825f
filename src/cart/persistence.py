# cache-backed repositories for the client-local collections (cart, shelf, history, ...)
from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Tuple

from db.cache import LocalCache
from utils.errors import LocalCacheError
from utils.logger import get_logger

_logger = get_logger(__name__)

Entry = Dict[str, Any]


def merge_lines(
    ours: List[Entry],
    theirs: List[Entry],
    key: str = "id",
    base: Optional[List[Entry]] = None,
) -> List[Entry]:
    """
    Conflict policy when another writer saved the same collection first.

    Without a base this is a union by `key`: our copy wins for ids present in
    both, our entries keep their order and entries only the other writer has
    are appended.

    With `base` (the collection as we last loaded or saved it) it is a
    three-way merge:
      - ids in base but missing from ours were removed by us and stay removed
      - ids in base, unchanged by us but missing from theirs were removed by
        the other writer and are dropped
      - ids new in theirs since base are appended
    """
    if base is None:
        seen = {entry.get(key) for entry in ours}
        merged = list(ours)
        for entry in theirs:
            if entry.get(key) in seen:
                continue
            seen.add(entry.get(key))
            merged.append(entry)
        return merged

    base_by_id = {entry.get(key): entry for entry in base}
    their_ids = {entry.get(key) for entry in theirs}
    merged = []
    seen = set()
    for entry in ours:
        entry_id = entry.get(key)
        if (
            entry_id in base_by_id
            and entry_id not in their_ids
            and base_by_id[entry_id] == entry
        ):
            continue
        seen.add(entry_id)
        merged.append(entry)
    for entry in theirs:
        entry_id = entry.get(key)
        if entry_id in seen or entry_id in base_by_id:
            continue
        seen.add(entry_id)
        merged.append(entry)
    return merged


class CollectionRepository:
    """
    One cached collection stored as a versioned blob:
        {"version": n, "items": [...]}

    `save` is a compare-and-swap against the version the caller last saw.
    The repository remembers the items at that version, so a conflicting save
    is merged three-way and removals made on either side survive.
    """

    def __init__(self, cache: LocalCache, key: str, id_key: str = "id"):
        self.cache = cache
        self.key = key
        self.id_key = id_key
        self._base: List[Entry] = []
        self._base_version: Optional[int] = None

    def _read_blob(self) -> Tuple[List[Entry], int]:
        raw = self.cache.read(self.key)
        if not raw:
            return [], 0
        try:
            blob = json.loads(raw)
        except ValueError:
            _logger.warning(f"Discarding unreadable cache entry '{self.key}'.")
            return [], 0
        # plain lists predate versioning
        if isinstance(blob, list):
            return [e for e in blob if isinstance(e, dict)], 0
        if not isinstance(blob, dict):
            return [], 0
        items = blob.get("items") or []
        return [e for e in items if isinstance(e, dict)], int(blob.get("version") or 0)

    def load(self) -> Tuple[List[Entry], int]:
        items, version = self._read_blob()
        self._base, self._base_version = list(items), version
        return items, version

    def save(self, items: List[Entry], seen_version: int) -> Tuple[List[Entry], int]:
        """
        Persist items. Returns the collection that is now current (merged if
        another writer got there first) and its version.

        Write failures are logged and otherwise ignored: the in-memory copy
        stays authoritative for this session.
        """
        current_items, current_version = self._read_blob()
        if current_version != seen_version:
            _logger.info(
                f"Cache '{self.key}' changed elsewhere "
                f"(v{seen_version} -> v{current_version}), merging."
            )
            base = self._base if self._base_version == seen_version else None
            items = merge_lines(items, current_items, self.id_key, base=base)
        new_version = max(current_version, seen_version) + 1
        try:
            self.cache.write(
                self.key, json.dumps({"version": new_version, "items": items})
            )
        except (LocalCacheError, TypeError, ValueError) as exc:
            _logger.warning(f"Could not persist '{self.key}': {exc}")
            return items, seen_version
        self._base, self._base_version = list(items), new_version
        return items, new_version
