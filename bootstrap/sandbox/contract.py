# bootstrap/sandbox/contract.py
"""
Sandbox execution contract.

The capability set a host must inject for a bundle to replay boot
instructions without filesystem access. Nothing here implements a sandbox;
bundled code relies on these names, on the stdlib and on the packages
listed in HOST_MODULES.
"""

import importlib.util
import logging
from typing import Any, Callable, Dict, Mapping, Protocol, Tuple, runtime_checkable

# name -> what the bundle uses it for
REQUIRED_CAPABILITIES: Dict[str, str] = {
    'set_timeout': 'deferred completion of boot work (DataSource.ready, async scripts)',
    'console': "log sink with 'log', 'warn' and 'error' channels",
    'local_storage': "storage stub exposing a 'debug' flag",
    'document': 'document-shaped stand-in',
    'navigator': "navigator-shaped stand-in with 'user_agent'",
    'Int32Array': 'typed-array constructor',
    'DataView': 'byte-view constructor',
    'window': 'self reference marking non-server execution',
}
CONSOLE_CHANNELS: Tuple[str, ...] = ('log', 'warn', 'error')
# third-party packages the bundled runtime imports from the host, besides the stdlib
HOST_MODULES: Tuple[str, ...] = ('pydantic',)


@runtime_checkable
class ConsoleLike(Protocol):
    def log(self, *args: Any) -> None: ...
    def warn(self, *args: Any) -> None: ...
    def error(self, *args: Any) -> None: ...


@runtime_checkable
class SandboxContext(Protocol):
    """Capabilities a hosting sandbox provides; created fresh per execution attempt."""
    console: ConsoleLike
    local_storage: Any
    document: Any
    navigator: Any
    window: Any

    def set_timeout(self, fn: Callable[[], Any], delay: float = 0) -> Any: ...

    def as_globals(self) -> Dict[str, Any]: ...


def missing_capabilities(namespace: Mapping[str, Any]) -> list:
    """Names from REQUIRED_CAPABILITIES absent in ``namespace``."""
    missing = [name for name in REQUIRED_CAPABILITIES if namespace.get(name) is None]
    console = namespace.get('console')
    if console is not None:
        missing.extend(f'console.{ch}' for ch in CONSOLE_CHANNELS if not callable(getattr(console, ch, None)))
    return missing


def missing_host_modules(names: Tuple[str, ...] = HOST_MODULES) -> list:
    """Entries of HOST_MODULES the hosting interpreter cannot import."""
    return [name for name in names if importlib.util.find_spec(name) is None]


class ConsoleLogHandler(logging.Handler):
    """Forwards log records to a sandbox console's three severity channels."""

    def __init__(self, console: Any, level: int = logging.NOTSET) -> None:
        super().__init__(level)
        self.console = console

    def emit(self, record: logging.LogRecord) -> None:
        try:
            message = self.format(record)
            if record.levelno >= logging.ERROR:
                self.console.error(message)
            elif record.levelno >= logging.WARNING:
                self.console.warn(message)
            else:
                self.console.log(message)
        except Exception:
            self.handleError(record)
