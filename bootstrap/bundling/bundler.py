"""
Reference bundler.

Packs explicitly added modules into one self-contained Python source file.
It performs no module resolution of its own: every module must be added by
specifier, and only modules bound with ``require(..., expose=...)`` get a
public name. Executing the bundle defines ``require`` in the executing
namespace; modules run lazily on first ``require``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, TextIO, Tuple

from bootstrap.sandbox.contract import REQUIRED_CAPABILITIES

logger = logging.getLogger(__name__)

_HEADER = '# Bundle generated by bootstrap.bundling.bundler - do not edit.\n'

_PRELUDE = '''
import builtins as _builtins
import types as _types

_CACHE = {}
_PACKAGES = {}
_HOST = globals()
_CAPABILITIES = {name: _HOST[name] for name in _CAPABILITY_NAMES if name in _HOST}
_real_import = _builtins.__import__


def _package(name):
    pkg = _PACKAGES.get(name)
    if pkg is None:
        pkg = _types.ModuleType(name)
        pkg.__path__ = []
        _PACKAGES[name] = pkg
        parent, _, child = name.rpartition('.')
        if parent:
            setattr(_package(parent), child, pkg)
    return pkg


def _is_package(name):
    prefix = name + '.'
    return any(spec.startswith(prefix) for spec in _MODULES)


def _top(name, module):
    if '.' not in name:
        return module
    return _package(name.partition('.')[0])


def _bundle_import(name, globals=None, locals=None, fromlist=(), level=0):
    if level:
        package = (globals or {}).get('__package__') or ''
        if level > 1:
            package = package.rsplit('.', level - 1)[0]
        name = package + '.' + name if name else package
    if name in _MODULES:
        module = _load(name)
        return module if fromlist else _top(name, module)
    if _is_package(name):
        for item in fromlist or ():
            if name + '.' + item in _MODULES:
                _load(name + '.' + item)
        return _package(name) if fromlist else _top(name, _package(name))
    return _real_import(name, globals, locals, fromlist, 0)


_BUILTINS = dict(vars(_builtins))
_BUILTINS['__import__'] = _bundle_import


def _load(spec):
    module = _CACHE.get(spec)
    if module is not None:
        return module
    if spec not in _MODULES:
        raise ImportError("Cannot find module '%s' in bundle" % spec)
    filename, source = _MODULES[spec]
    module = _types.ModuleType(spec)
    module.__file__ = filename
    module.__package__ = '' if spec.startswith('.') else spec.rpartition('.')[0]
    namespace = module.__dict__
    namespace.update(_CAPABILITIES)
    namespace['__builtins__'] = _BUILTINS
    namespace['require'] = require
    _CACHE[spec] = module
    try:
        exec(compile(source, filename, 'exec'), namespace)
    except BaseException:
        del _CACHE[spec]
        raise
    parent, _, child = spec.rpartition('.')
    if parent and not spec.startswith('.') and _is_package(parent):
        setattr(_package(parent), child, module)
    return module


def require(name):
    spec = _EXPOSED.get(name)
    if spec is not None:
        module = _load(spec)
        return getattr(module, 'exports', module)
    return _load(name)
'''


class SourceBundler:
    """Builder collecting modules and expose bindings, then emitting one bundle."""

    def __init__(self) -> None:
        self._modules: Dict[str, Tuple[str, str]] = {}
        self._exposed: Dict[str, str] = {}

    def add(self, specifier: str, source: str, filename: Optional[str] = None) -> 'SourceBundler':
        if specifier in self._modules and self._modules[specifier][1] != source:
            raise ValueError(f"Module '{specifier}' was already added with different source")
        self._modules[specifier] = (filename or f'<bundle:{specifier}>', source)
        return self

    def require(self, specifier: str, expose: Optional[str] = None) -> 'SourceBundler':
        if specifier not in self._modules:
            raise KeyError(f"Cannot expose '{specifier}': module was never added")
        alias = expose or specifier
        if alias in self._exposed and self._exposed[alias] != specifier:
            raise ValueError(f"Public name '{alias}' is already bound to '{self._exposed[alias]}'")
        self._exposed[alias] = specifier
        return self

    @property
    def specifiers(self) -> List[str]:
        return list(self._modules)

    @property
    def exposed(self) -> Dict[str, str]:
        return dict(self._exposed)

    def render(self) -> str:
        parts = [_HEADER, f'_CAPABILITY_NAMES = {tuple(REQUIRED_CAPABILITIES)!r}\n', '_MODULES = {\n']
        for specifier, (filename, source) in self._modules.items():
            parts.append(f'    {specifier!r}: ({filename!r}, {source!r}),\n')
        parts.append('}\n')
        parts.append(f'_EXPOSED = {self._exposed!r}\n')
        parts.append(_PRELUDE)
        return ''.join(parts)

    def bundle(self, stream: TextIO) -> None:
        text = self.render()
        stream.write(text)
        logger.info("Bundled %d module(s), exposed %s", len(self._modules), sorted(self._exposed))


def write_bundle(builder: Any, path: Path | str) -> Path:
    """
    Bundle into ``path``. Output goes to a sibling temp file that is closed on
    every exit path and renamed only when bundling succeeded.
    """
    target = Path(path)
    partial = target.with_name(target.name + '.partial')
    try:
        with partial.open('w', encoding='utf-8') as out:
            builder.bundle(out)
        partial.replace(target)
    except BaseException:
        partial.unlink(missing_ok=True)
        logger.error("✗ Bundling into %s failed; partial output removed", target)
        raise
    logger.info("✓ Bundle written: %s", target)
    return target
