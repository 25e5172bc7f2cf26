# bootstrap/application.py
"""
Minimal application object booted by the executor.

Exposes a settings mapping, models keyed by name, datasources and middleware
registrations. The same class runs in-process and inside a bundle; in the
latter case the runtime flag is "browser" and deferred work goes through the
sandbox's timer.
"""

import asyncio
import copy
import logging
import threading
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

RUNTIME_SERVER = 'server'
RUNTIME_BROWSER = 'browser'

Timer = Callable[..., Any]


def detect_runtime(namespace: Optional[Dict[str, Any]] = None) -> str:
    """A ``window`` binding marks non-server execution."""
    if namespace is not None and namespace.get('window') is not None:
        return RUNTIME_BROWSER
    return RUNTIME_SERVER


def _default_timer(fn: Callable[[], Any], delay: float = 0) -> Any:
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        timer = threading.Timer(delay / 1000.0, fn)
        timer.daemon = True
        timer.start()
        return timer
    return loop.call_later(delay / 1000.0, fn)


class ModelRegistry(dict):
    """Models keyed by name; also reachable as attributes (``app.models.Customer``)."""

    def __getattr__(self, name: str) -> 'Model':
        try:
            return self[name]
        except KeyError:
            raise AttributeError(f"No model named '{name}'") from None


class DataSource:
    def __init__(self, name: str, settings: Dict[str, Any], app: 'Application') -> None:
        self.name = name
        self.settings = copy.deepcopy(settings)
        self.connector = self.settings.get('connector', 'memory')
        self.app = app
        self.models: List['Model'] = []
        self.connected = False

    def attach(self, model: 'Model') -> None:
        self.models.append(model)
        model.data_source = self

    def ready(self, callback: Callable[[Optional[BaseException]], Any]) -> None:
        """Defer ``callback`` until the datasource is connected."""
        def _connect() -> None:
            self.connected = True
            callback(None)
        self.app.set_timeout(_connect, 0)

    def __repr__(self) -> str:
        return f"DataSource({self.name!r}, connector={self.connector!r})"


class Model:
    def __init__(self, name: str, definition: Dict[str, Any], app: 'Application') -> None:
        self.name = name
        self.app = app
        self.definition = copy.deepcopy(definition)
        self.properties: Dict[str, Any] = dict(self.definition.get('properties') or {})
        self.settings: Dict[str, Any] = dict(self.definition.get('settings') or self.definition.get('options') or {})
        self.public = bool(self.definition.get('public', True))
        self.data_source: Optional[DataSource] = None

    def __repr__(self) -> str:
        ds = self.data_source.name if self.data_source else None
        return f"Model({self.name!r}, data_source={ds!r})"


class Application:
    """The application instance boot instructions are applied to."""

    def __init__(self, runtime: str = RUNTIME_SERVER, timer: Optional[Timer] = None) -> None:
        self.runtime = runtime
        self.settings: Dict[str, Any] = {}
        self.config: Dict[str, Dict[str, Any]] = {}
        self.models = ModelRegistry()
        self.datasources: Dict[str, DataSource] = {}
        self.middleware_entries: List[Dict[str, Any]] = []
        self.booting = False
        self._timer = timer or _default_timer
        self._listeners: Dict[str, List[Callable[..., Any]]] = {}

    @property
    def is_server(self) -> bool:
        return self.runtime == RUNTIME_SERVER

    # ------------------------------------------------------------------ #
    # Settings
    # ------------------------------------------------------------------ #
    def set(self, key: str, value: Any) -> 'Application':
        self.settings[key] = value
        return self

    def get(self, key: str, default: Any = None) -> Any:
        return self.settings.get(key, default)

    def enabled(self, key: str) -> bool:
        return bool(self.settings.get(key))

    def configure(self, domain: str, entries: Dict[str, Any]) -> None:
        if domain == 'app':
            for key, value in entries.items():
                self.set(key, copy.deepcopy(value))
        else:
            self.config[domain] = copy.deepcopy(entries)

    # ------------------------------------------------------------------ #
    # Definitions
    # ------------------------------------------------------------------ #
    def data_source(self, name: str, settings: Dict[str, Any]) -> DataSource:
        ds = DataSource(name, settings, self)
        self.datasources[name] = ds
        logger.debug("DataSource '%s' defined (connector=%s)", name, ds.connector)
        return ds

    def model(self, name: str, definition: Dict[str, Any]) -> Model:
        model = Model(name, definition, self)
        ds_name = definition.get('dataSource', definition.get('datasource'))
        if ds_name is not None:
            if ds_name not in self.datasources:
                raise KeyError(f"Model '{name}' is referencing a dataSource '{ds_name}' that does not exist")
            self.datasources[ds_name].attach(model)
        self.models[name] = model
        logger.debug("Model '%s' defined", name)
        return model

    def middleware(self, name: str, definition: Dict[str, Any]) -> None:
        entry = copy.deepcopy(definition)
        entry['name'] = name
        self.middleware_entries.append(entry)

    def middleware_for_phase(self, phase: str) -> List[Dict[str, Any]]:
        return [m for m in self.middleware_entries if m.get('phase') == phase]

    # ------------------------------------------------------------------ #
    # Events & timers
    # ------------------------------------------------------------------ #
    def set_timeout(self, fn: Callable[[], Any], delay: float = 0) -> Any:
        return self._timer(fn, delay)

    def on(self, event: str, listener: Callable[..., Any]) -> None:
        self._listeners.setdefault(event, []).append(listener)

    def emit(self, event: str, *args: Any) -> None:
        for listener in list(self._listeners.get(event, [])):
            listener(*args)

    def __repr__(self) -> str:
        return f"Application(runtime={self.runtime!r}, models={list(self.models)})"
