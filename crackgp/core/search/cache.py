# crackgp/core/search/cache.py
"""
Generation-scoped fitness cache.

Entries are keyed by population slot. Because slot identity is reassigned when
the next generation is bred, the cache must be restarted every generation;
reproduction code that copies an individual unchanged may carry its record over
into the new generation's slot.
"""

import logging
import threading
from typing import Any, Dict, Mapping, Optional, Tuple


class FitnessCache:
    """
    Memoizes per-slot fitness records within one generation.

    All operations are guarded by a re-entrant lock so parallel evaluation
    workers may read and write concurrently.
    """

    def __init__(self):
        self.generation: Optional[int] = None
        self._entries: Dict[int, Tuple[int, Any]] = {}
        self.hit_count = 0
        self.miss_count = 0
        self.lock = threading.RLock()
        self.logger = logging.getLogger(__name__)

    def begin_generation(self, generation: int):
        """Invalidate every entry and start caching for ``generation``."""
        with self.lock:
            self._entries.clear()
            self.generation = generation

    def get(self, slot: int):
        """Return the record cached for ``slot`` in the current generation, or None."""
        with self.lock:
            entry = self._entries.get(slot)
            if entry is not None and entry[0] == self.generation:
                self.hit_count += 1
                return entry[1]
            self.miss_count += 1
            return None

    def put(self, slot: int, record):
        """Cache a record for ``slot`` in the current generation."""
        with self.lock:
            if self.generation is None:
                raise RuntimeError("begin_generation() must be called before put()")
            self._entries[slot] = (self.generation, record)

    def carry_over(self, records: Mapping[int, Any]):
        """
        Seed the current generation with records of unchanged individuals.

        Args:
            records: New slot index -> record computed in the previous generation
        """
        with self.lock:
            for slot, record in records.items():
                self.put(slot, record)
            self.logger.debug(f"Carried {len(records)} fitness records into generation {self.generation}")

    def __contains__(self, slot: int) -> bool:
        with self.lock:
            entry = self._entries.get(slot)
            return entry is not None and entry[0] == self.generation

    def __len__(self) -> int:
        with self.lock:
            return len(self._entries)

    def get_cache_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        with self.lock:
            total_requests = self.hit_count + self.miss_count
            return {
                'generation': self.generation,
                'size': len(self._entries),
                'hit_count': self.hit_count,
                'miss_count': self.miss_count,
                'hit_ratio': self.hit_count / total_requests if total_requests > 0 else 0.0,
            }
