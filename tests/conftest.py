"""
Pytest configuration for CartEVM tests.
"""
import os
import sys

import pytest

# Make `import cartevm` work without installing the package.
_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
_SRC_DIR = os.path.join(_ROOT, 'src')

if _SRC_DIR not in sys.path:
	sys.path.insert(0, _SRC_DIR)

from cartevm.compiler import AssemblyCompiler  # noqa: E402
from cartevm.driver import ExecutionDriver  # noqa: E402
from cartevm.evm.frame import OperationTracer  # noqa: E402
from cartevm.fixture import build_world_state  # noqa: E402


class RecordingTracer(OperationTracer):
	"""Remembers every frame that entered and left execution."""

	def __init__(self):
		self.entered = []
		self.exited = []

	def trace_context_enter(self, frame):
		self.entered.append(frame)

	def trace_context_exit(self, frame):
		self.exited.append(frame)


@pytest.fixture
def assemble():
	compiler = AssemblyCompiler()

	def _assemble(source: str) -> bytes:
		return bytes.fromhex(compiler.compile(source))
	return _assemble


@pytest.fixture
def execute(assemble):
	"""Assemble *source*, run it as the receiver's code and return (result, world)."""
	def _execute(source: str, gas_limit: int = 10_000, tracer=None):
		code = assemble(source)
		world = build_world_state(code)
		driver = ExecutionDriver(tracer=tracer) if tracer is not None else ExecutionDriver()
		return driver.run(code, world, gas_limit), world
	return _execute


@pytest.fixture
def tracer():
	return RecordingTracer()
