"""
CartEVM - EVM Operation Benchmarks

Measures the gas and wall-clock cost of single EVM operations:
- Loop programs synthesized per operation (step catalog + generator)
- Compiled-artifact cache in front of the assembler or solc
- Deterministic fixture world state for every run
- Frame-stack execution driver with nanosecond timing
- Per-section cumulative metrics and rich/JSON reports
"""

__version__ = "0.1.0"

from .errors import CartEVMError, CompilationError, UnknownStepError
from .compiler import AssemblyCompiler, Compiler, SolcYulCompiler, get_compiler
from .cache import CacheStats, CompiledArtifactCache
from .step import (
    GeneratedCode, Step, STEPS, RETURN_CONTRACT_ADDRESS, REVERT_CONTRACT_ADDRESS,
    get_step, steps_by_category,
)
from .generator import CodeGenerator
from .fixture import RECEIVER, SENDER, build_world_state
from .driver import ExecutionDriver, ExecutionResult, ExecutionStatus
from .metrics import CumulativeSnapshot, MetricsAggregator
from .config import BenchmarkProfile
from .runner import BenchmarkOutcome, BenchmarkRunner, SectionReport

__all__ = [
    '__version__',
    # Errors
    'CartEVMError', 'CompilationError', 'UnknownStepError',
    # Compilation
    'AssemblyCompiler', 'Compiler', 'SolcYulCompiler', 'get_compiler',
    'CacheStats', 'CompiledArtifactCache',
    # Steps
    'GeneratedCode', 'Step', 'STEPS', 'RETURN_CONTRACT_ADDRESS',
    'REVERT_CONTRACT_ADDRESS', 'get_step', 'steps_by_category', 'CodeGenerator',
    # Execution
    'RECEIVER', 'SENDER', 'build_world_state', 'ExecutionDriver',
    'ExecutionResult', 'ExecutionStatus',
    # Metrics and orchestration
    'CumulativeSnapshot', 'MetricsAggregator', 'BenchmarkProfile',
    'BenchmarkOutcome', 'BenchmarkRunner', 'SectionReport',
]
