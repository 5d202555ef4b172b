"""
Document store used for devices, locations, movements and recommendations.

Each collection keeps plain dict documents in memory and can mirror them to a
JSON file so the command line tool keeps state between runs. Writes inside a
``batch()`` are flushed to disk once when the batch ends.
"""

import contextlib
import copy
import json
import logging
import os
import threading
import uuid
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Set, Tuple, Union

logger = logging.getLogger(__name__)

COLLECTIONS = ('devices', 'locations', 'movements', 'recommendations')
UNIQUE_KEYS = {
    'devices': 'device_id',
    'locations': 'location_id',
}
MOVEMENT_KEY = ('device_id', 'from_location', 'to_location', 'time_in', 'time_out')
INDEXES = {
    'movements': [MOVEMENT_KEY],
}


def _matches(doc: Dict[str, Any], query: Optional[Dict[str, Any]]) -> bool:
    return all(doc.get(key) == value for key, value in (query or {}).items())


class Collection:
    def __init__(self, name: str, unique_key: Optional[str] = None,
                 path: Optional[Union[str, Path]] = None,
                 indexes: Sequence[Sequence[str]] = ()):
        self.name = name
        self.unique_key = unique_key
        self.path = Path(path) if path else None
        self._docs: List[Dict[str, Any]] = []
        self._lock = threading.RLock()
        self._batch_depth = 0
        self._dirty = False
        self._indexes: Dict[Tuple[str, ...], Set[Tuple]] = {tuple(fields): set() for fields in indexes}
        if self.path is not None:
            self._load()
        self._rebuild_indexes()

    def _load(self):
        if not self.path.exists():
            return
        try:
            with open(self.path, 'r') as f:
                self._docs = json.load(f)
            logger.debug(f"Loaded {len(self._docs)} documents into {self.name}")
        except json.JSONDecodeError as e:
            logger.error(f"Error loading collection {self.name} from {self.path}: {e}")
            raise

    def _write(self):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + '.tmp')
        with open(tmp_path, 'w') as f:
            json.dump(self._docs, f, default=str)
        os.replace(tmp_path, self.path)

    def _save(self):
        if self.path is None:
            return
        if self._batch_depth:
            self._dirty = True
            return
        self._write()
        self._dirty = False

    @contextlib.contextmanager
    def batch(self) -> Iterator['Collection']:
        """Defer file writes until the outermost batch exits."""
        with self._lock:
            self._batch_depth += 1
        try:
            yield self
        finally:
            with self._lock:
                self._batch_depth -= 1
                if self._batch_depth == 0 and self._dirty:
                    self._save()

    def _index_entry(self, fields: Tuple[str, ...], doc: Dict[str, Any]) -> Tuple:
        return tuple(doc.get(field) for field in fields)

    def _rebuild_indexes(self):
        for fields, entries in self._indexes.items():
            entries.clear()
            entries.update(self._index_entry(fields, doc) for doc in self._docs)

    def _check_unique(self, doc: Dict[str, Any], ignore: Optional[Dict[str, Any]] = None):
        if not self.unique_key or self.unique_key not in doc:
            return
        value = doc[self.unique_key]
        for existing in self._docs:
            if existing is not ignore and existing.get(self.unique_key) == value:
                raise ValueError(f"Duplicate {self.unique_key} '{value}' in {self.name}")

    def find(self, query: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        with self._lock:
            return [copy.deepcopy(doc) for doc in self._docs if _matches(doc, query)]

    def find_one(self, query: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        with self._lock:
            for doc in self._docs:
                if _matches(doc, query):
                    return copy.deepcopy(doc)
            return None

    def exists(self, query: Dict[str, Any]) -> bool:
        """Whether any document matches; uses an index when one covers the query fields."""
        with self._lock:
            for fields, entries in self._indexes.items():
                if set(fields) == set(query):
                    return tuple(query[field] for field in fields) in entries
            return any(_matches(doc, query) for doc in self._docs)

    def count(self, query: Optional[Dict[str, Any]] = None) -> int:
        with self._lock:
            return sum(1 for doc in self._docs if _matches(doc, query))

    def insert(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a document and return a copy carrying its generated ``_id``."""
        with self._lock:
            new_doc = copy.deepcopy(doc)
            new_doc.setdefault('_id', uuid.uuid4().hex)
            self._check_unique(new_doc)
            self._docs.append(new_doc)
            for fields, entries in self._indexes.items():
                entries.add(self._index_entry(fields, new_doc))
            self._save()
            return copy.deepcopy(new_doc)

    def update(self, query: Dict[str, Any], patch: Dict[str, Any]) -> int:
        """Merge patch into every matching document. Returns the number updated."""
        with self._lock:
            updated = 0
            for doc in self._docs:
                if _matches(doc, query):
                    self._check_unique({**doc, **patch}, ignore=doc)
                    doc.update(copy.deepcopy(patch))
                    updated += 1
            if updated:
                self._rebuild_indexes()
                self._save()
            return updated

    def upsert(self, query: Dict[str, Any], patch: Dict[str, Any]) -> Dict[str, Any]:
        """Update the first matching document or insert query + patch."""
        with self._lock:
            for doc in self._docs:
                if _matches(doc, query):
                    doc.update(copy.deepcopy(patch))
                    self._rebuild_indexes()
                    self._save()
                    return copy.deepcopy(doc)
            return self.insert({**query, **patch})

    def remove(self, query: Optional[Dict[str, Any]] = None) -> int:
        """Remove every matching document. Returns the number removed."""
        with self._lock:
            kept = [doc for doc in self._docs if not _matches(doc, query)]
            removed = len(self._docs) - len(kept)
            self._docs = kept
            if removed:
                self._rebuild_indexes()
                self._save()
            return removed

    def remove_all(self, query: Optional[Dict[str, Any]] = None) -> int:
        return self.remove(query)


class Database:
    """The four collections the tracker works with."""

    def __init__(self, data_dir: Optional[Union[str, Path]] = None):
        self.data_dir = Path(data_dir) if data_dir else None
        for name in COLLECTIONS:
            path = self.data_dir / f'{name}.json' if self.data_dir else None
            setattr(self, name, Collection(name, UNIQUE_KEYS.get(name), path, INDEXES.get(name, ())))
        if self.data_dir:
            logger.info(f"Database initialized at {self.data_dir}")

    @contextlib.contextmanager
    def batch(self) -> Iterator['Database']:
        """Group writes to every collection; each changed file is written once on exit."""
        with contextlib.ExitStack() as stack:
            for name in COLLECTIONS:
                stack.enter_context(getattr(self, name).batch())
            yield self

    def reset(self) -> Dict[str, int]:
        return {name: getattr(self, name).remove_all({}) for name in COLLECTIONS}
