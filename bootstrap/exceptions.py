"""
Exception classes for the boot compiler.

Compilation wraps every discovery or parse failure in a single CompileError,
execution surfaces the first failing instruction as an ExecutionError, and
bundling reports unresolvable scripts as AdaptationError.
"""

from typing import Any, Optional

__all__ = [
    'BootError', 'ConfigParseError', 'DiscoveryError', 'CompileError',
    'ExecutionError', 'AdaptationError',
]


class BootError(RuntimeError):
    """
    Base exception for all boot-related errors.

    Carries optional domain and path context that is rendered by __str__.
    """

    def __init__(self, message: str, domain: Optional[str] = None, path: Optional[str] = None):
        super().__init__(message)
        self.domain = domain
        self.path = str(path) if path is not None else None

    def __str__(self) -> str:
        base_msg = super().__str__()

        context_parts = []
        if self.domain:
            context_parts.append(f"domain={self.domain}")
        if self.path:
            context_parts.append(f"path={self.path}")

        if context_parts:
            return f"{base_msg} ({', '.join(context_parts)})"
        return base_msg


class ConfigParseError(BootError):
    """
    Raised when a present configuration file cannot be parsed.

    Missing files are never an error; malformed YAML/JSON or a top level that
    is not a mapping is.
    """
    pass


class DiscoveryError(BootError):
    """Raised when the boot-scripts location exists but cannot be read."""
    pass


class CompileError(BootError):
    """
    Raised when compilation fails. Wraps the first underlying failure.

    No partial instruction set is ever returned alongside this error.
    """

    def __init__(
        self,
        message: str,
        cause: Optional[BaseException] = None,
        domain: Optional[str] = None,
        path: Optional[str] = None,
    ):
        if cause is not None and isinstance(cause, BootError):
            domain = domain or cause.domain
            path = path or cause.path
        super().__init__(message, domain=domain, path=path)
        self.cause = cause

    def __str__(self) -> str:
        base_msg = super().__str__()
        if self.cause is not None:
            return f"{base_msg}\nCaused by: {type(self.cause).__name__}: {self.cause}"
        return base_msg


class ExecutionError(BootError):
    """
    Raised when an instruction fails while booting an application.

    The remaining instructions are skipped and nothing is rolled back, so the
    application instance is left partially configured.
    """

    def __init__(self, message: str, index: int, instruction: Any = None, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.index = index
        self.instruction = instruction
        self.cause = cause

    def __str__(self) -> str:
        base_msg = f"{super().__str__()} (instruction #{self.index})"
        if self.cause is not None:
            return f"{base_msg}\nCaused by: {type(self.cause).__name__}: {self.cause}"
        return base_msg


class AdaptationError(BootError):
    """Raised when an instruction cannot be statically resolved for bundling."""

    def __init__(self, message: str, specifier: Optional[str] = None, path: Optional[str] = None):
        super().__init__(message, path=path)
        self.specifier = specifier

    def __str__(self) -> str:
        base_msg = super().__str__()
        if self.specifier:
            return f"{base_msg} [specifier={self.specifier}]"
        return base_msg
