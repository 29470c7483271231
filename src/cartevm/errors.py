"""
Exceptions raised by the CartEVM harness.

Execution outcomes (reverts, exceptional halts) are never raised; they are
reported in :class:`cartevm.driver.ExecutionResult`. Only failures that stop a
single measurement from happening at all are exceptions.
"""

from typing import Optional


class CartEVMError(Exception):
    """Base class for harness errors"""


class CompilationError(CartEVMError):
    """Raised when generated source cannot be compiled to bytecode"""
    def __init__(self, source: str, cause: Optional[BaseException] = None, message: str = ""):
        self.source = source
        self.cause = cause
        detail = message or (str(cause) if cause is not None else "compilation failed")
        preview = source.strip().splitlines()[0] if source.strip() else "<empty source>"
        super().__init__(f"Compilation failed: {detail} (source starts with {preview!r})")


class UnknownStepError(CartEVMError):
    """Raised when a step name is not in the catalog"""
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown step: '{name}'")
