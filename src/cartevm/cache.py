"""
Compiled Artifact Cache for CartEVM

Maps generated source text to compiled bytecode so identical synthetic
programs are compiled once per process, no matter how many times a sweep
measures them. Features:
- Exact-source keys (no hashing, no normalization)
- At-most-once compilation per key, also under concurrent callers
- No poison caching: a failed compile stores nothing
- Hit/miss/compile statistics
- Optional LRU bound (unbounded by default)

Compilation always happens here, before the driver starts its timer, so a
cache miss never leaks into a measured execution.
"""

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .compiler import Compiler
from .errors import CompilationError

logger = logging.getLogger("cartevm.cache")

DEFAULT_INITIAL_CAPACITY = 30_000


@dataclass
class CacheStats:
    """Statistics for the compiled artifact cache"""
    hits: int = 0
    misses: int = 0
    compilations: int = 0
    failures: int = 0
    evictions: int = 0
    compile_nanos: int = 0
    hit_rate: float = 0.0

    def update_hit_rate(self):
        """Update hit rate percentage"""
        total = self.hits + self.misses
        self.hit_rate = (self.hits / total * 100) if total > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert stats to dictionary"""
        return {
            'hits': self.hits,
            'misses': self.misses,
            'compilations': self.compilations,
            'failures': self.failures,
            'evictions': self.evictions,
            'compile_nanos': self.compile_nanos,
            'hit_rate': round(self.hit_rate, 2),
        }


class CompiledArtifactCache:
    """
    Source text -> bytecode hex cache in front of a :class:`Compiler`

    Usage:
        cache = CompiledArtifactCache(AssemblyCompiler())
        bytecode = cache.get_or_compile(generated.source)

        stats = cache.stats
        print(f"Hit rate: {stats.hit_rate}%")
    """

    def __init__(
        self,
        compiler: Compiler,
        initial_capacity: int = DEFAULT_INITIAL_CAPACITY,
        max_size: Optional[int] = None,
    ):
        """
        Args:
            compiler: Compiler invoked on a miss
            initial_capacity: Expected number of distinct sources in a sweep
            max_size: Entry bound with LRU eviction (None = unbounded)
        """
        if max_size is not None and max_size < 1:
            raise ValueError("max_size must be positive or None")
        self.compiler = compiler
        self.initial_capacity = initial_capacity
        self.max_size = max_size

        self._cache: "OrderedDict[str, str]" = OrderedDict()
        self._lock = threading.Lock()
        self._key_locks: Dict[str, threading.Lock] = {}

        self.stats = CacheStats()

    def get_or_compile(self, source: str) -> str:
        """
        Return the bytecode for *source*, compiling it on first request.

        Raises:
            CompilationError: if the compiler rejects the source; the key
                stays uncached so a later call retries.
        """
        with self._lock:
            bytecode = self._lookup(source)
            if bytecode is not None:
                return bytecode
            key_lock = self._key_locks.setdefault(source, threading.Lock())

        # Serialize compiles of the same key; distinct keys compile in parallel.
        with key_lock:
            with self._lock:
                bytecode = self._lookup(source)
                if bytecode is not None:
                    return bytecode
                self.stats.misses += 1
                self.stats.update_hit_rate()

            bytecode = self._compile(source)

            with self._lock:
                self._store(source, bytecode)
                self._key_locks.pop(source, None)
            return bytecode

    def _lookup(self, source: str) -> Optional[str]:
        bytecode = self._cache.get(source)
        if bytecode is None:
            return None
        self._cache.move_to_end(source)
        self.stats.hits += 1
        self.stats.update_hit_rate()
        return bytecode

    def _compile(self, source: str) -> str:
        start = time.perf_counter_ns()
        try:
            bytecode = self.compiler.compile(source)
        except CompilationError:
            self._record_failure(source)
            raise
        except Exception as e:
            self._record_failure(source)
            raise CompilationError(source, cause=e) from e
        elapsed = time.perf_counter_ns() - start
        with self._lock:
            self.stats.compilations += 1
            self.stats.compile_nanos += elapsed
        logger.debug("Compiled %d source chars with %s in %d ns", len(source), self.compiler.name, elapsed)
        return bytecode

    def _record_failure(self, source: str):
        with self._lock:
            self.stats.failures += 1
            self._key_locks.pop(source, None)
        logger.warning("Compilation with %s failed; nothing cached", self.compiler.name)

    def _store(self, source: str, bytecode: str):
        self._cache[source] = bytecode
        if self.max_size is not None:
            while len(self._cache) > self.max_size:
                evicted, _ = self._cache.popitem(last=False)
                self.stats.evictions += 1
                logger.debug("Evicted LRU entry (%d source chars)", len(evicted))
        elif len(self._cache) == self.initial_capacity + 1:
            logger.info("Artifact cache grew past its expected capacity of %d entries", self.initial_capacity)

    def clear(self):
        """Drop every cached artifact (statistics are kept)"""
        with self._lock:
            self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)

    def __contains__(self, source: str) -> bool:
        return source in self._cache

    def __repr__(self) -> str:
        return (
            f"CompiledArtifactCache(compiler={self.compiler.name}, entries={len(self._cache)}, "
            f"hit_rate={self.stats.hit_rate:.1f}%)"
        )
