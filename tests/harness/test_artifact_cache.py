"""
Tests for the compiled artifact cache (cartevm.cache).
"""

import threading

import pytest

from cartevm.cache import CacheStats, CompiledArtifactCache
from cartevm.compiler import AssemblyCompiler, Compiler
from cartevm.errors import CompilationError


class CountingCompiler(Compiler):
    """Delegates to the assembler and counts how often it is invoked."""

    name = "counting"

    def __init__(self):
        self.calls = 0
        self._inner = AssemblyCompiler()
        self._lock = threading.Lock()

    def compile(self, source):
        with self._lock:
            self.calls += 1
        return self._inner.compile(source)


class FlakyCompiler(Compiler):
    """Fails on the first call, succeeds afterwards."""

    name = "flaky"

    def __init__(self):
        self.calls = 0

    def compile(self, source):
        self.calls += 1
        if self.calls == 1:
            raise RuntimeError("transient failure")
        return "00"


SLOAD_SOURCE = "PUSH 0x54\nSLOAD\nPOP\nSTOP\n"


# ═══════════════════════════════════════════════════════════════════════════
# Compile-once behaviour
# ═══════════════════════════════════════════════════════════════════════════

class TestCompileOnce:
    def test_second_lookup_is_a_hit(self):
        compiler = CountingCompiler()
        cache = CompiledArtifactCache(compiler)

        first = cache.get_or_compile(SLOAD_SOURCE)
        second = cache.get_or_compile(SLOAD_SOURCE)

        assert first == second == "6054545000"
        assert compiler.calls == 1
        assert cache.stats.hits == 1
        assert cache.stats.misses == 1
        assert cache.stats.compilations == 1

    def test_distinct_sources_compile_separately(self):
        compiler = CountingCompiler()
        cache = CompiledArtifactCache(compiler)
        cache.get_or_compile("STOP")
        cache.get_or_compile("PUSH 1\nPOP\nSTOP")
        assert compiler.calls == 2
        assert len(cache) == 2

    def test_source_text_is_the_exact_key(self):
        compiler = CountingCompiler()
        cache = CompiledArtifactCache(compiler)
        cache.get_or_compile("STOP")
        cache.get_or_compile("STOP\n")
        assert compiler.calls == 2

    def test_concurrent_callers_compile_once(self):
        compiler = CountingCompiler()
        cache = CompiledArtifactCache(compiler)
        results = []

        def worker():
            results.append(cache.get_or_compile(SLOAD_SOURCE))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert compiler.calls == 1
        assert set(results) == {"6054545000"}


# ═══════════════════════════════════════════════════════════════════════════
# Failures
# ═══════════════════════════════════════════════════════════════════════════

class TestFailures:
    def test_compilation_error_propagates(self):
        cache = CompiledArtifactCache(AssemblyCompiler())
        with pytest.raises(CompilationError) as exc_info:
            cache.get_or_compile("NOT_AN_OPCODE")
        assert exc_info.value.source == "NOT_AN_OPCODE"
        assert "NOT_AN_OPCODE" not in cache
        assert cache.stats.failures == 1

    def test_failed_key_is_not_cached(self):
        compiler = FlakyCompiler()
        cache = CompiledArtifactCache(compiler)

        with pytest.raises(CompilationError) as exc_info:
            cache.get_or_compile("STOP")
        assert isinstance(exc_info.value.cause, RuntimeError)

        assert cache.get_or_compile("STOP") == "00"
        assert compiler.calls == 2


# ═══════════════════════════════════════════════════════════════════════════
# Bounded mode and statistics
# ═══════════════════════════════════════════════════════════════════════════

class TestBoundedCache:
    def test_unbounded_by_default(self):
        cache = CompiledArtifactCache(AssemblyCompiler())
        assert cache.max_size is None

    def test_lru_eviction(self):
        compiler = CountingCompiler()
        cache = CompiledArtifactCache(compiler, max_size=2)
        cache.get_or_compile("PUSH 1\nSTOP")
        cache.get_or_compile("PUSH 2\nSTOP")
        cache.get_or_compile("PUSH 1\nSTOP")  # refresh
        cache.get_or_compile("PUSH 3\nSTOP")  # evicts PUSH 2

        assert "PUSH 1\nSTOP" in cache
        assert "PUSH 2\nSTOP" not in cache
        assert cache.stats.evictions == 1

    def test_invalid_max_size(self):
        with pytest.raises(ValueError):
            CompiledArtifactCache(AssemblyCompiler(), max_size=0)

    def test_clear_keeps_stats(self):
        cache = CompiledArtifactCache(AssemblyCompiler())
        cache.get_or_compile("STOP")
        cache.clear()
        assert len(cache) == 0
        assert cache.stats.compilations == 1

    def test_stats_to_dict(self):
        stats = CacheStats(hits=3, misses=1)
        stats.update_hit_rate()
        data = stats.to_dict()
        assert data["hit_rate"] == 75.0
        assert data["hits"] == 3
