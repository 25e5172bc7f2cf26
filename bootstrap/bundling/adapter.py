"""
Bundle Adapter
──────────────
* Inlines every script an InstructionSet references under its static specifier
* Inlines the runtime modules the replay needs (application, executor, models)
* Synthesizes a main module that replays the instructions and exports the app

Nothing in the produced manifest is loaded by computed path at run time, so a
bundler can enumerate every dependency without executing code.
"""

from __future__ import annotations

import importlib.util
import logging
import pprint
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from bootstrap.bundling.manifest import (
    ROLE_INSTRUCTIONS,
    ROLE_MAIN,
    ROLE_RUNTIME,
    BundleManifest,
    BundleModule,
    ExposeBinding,
)
from bootstrap.compiler.instruction_compiler import compile_instructions
from bootstrap.compiler.instructions import InstructionSet, ScriptRef
from bootstrap.exceptions import AdaptationError

logger = logging.getLogger(__name__)

DEFAULT_EXPOSE = 'browser-app'
MAIN_SPECIFIER = 'bootstrap#main'
INSTRUCTIONS_SPECIFIER = 'bootstrap#instructions'
BUNDLE_LOGGER_PREFIX = 'bundle'

# dependency order; each only imports earlier entries, the stdlib and pydantic
RUNTIME_MODULES: Sequence[str] = (
    'bootstrap.exceptions',
    'bootstrap.compiler.instructions',
    'bootstrap.application',
    'bootstrap.sandbox.contract',
    'bootstrap.core.executor',
)

# names the reprs of YAML scalars may refer to
_INSTRUCTIONS_HEADER = 'import datetime\nfrom math import inf, nan\n\n'

_MAIN_TEMPLATE = '''\
# Replays compiled boot instructions inside a sandbox.
import logging

from bootstrap.application import Application, detect_runtime
from bootstrap.compiler.instructions import InstructionSet
from bootstrap.core.executor import ServerExecutor
from bootstrap.sandbox.contract import ConsoleLogHandler, missing_capabilities, missing_host_modules

_missing = missing_capabilities(globals()) + missing_host_modules()
if _missing:
    raise RuntimeError(f"Sandbox does not provide required capabilities: {{_missing}}")

# bundle-private logger tree; the host's own loggers are left untouched
_logger = logging.getLogger({logger_name!r})
_logger.propagate = False
_logger.setLevel(logging.DEBUG if getattr(local_storage, 'debug', None) else logging.INFO)
_handler = ConsoleLogHandler(console)
_logger.addHandler(_handler)
for _specifier in {runtime!r}:
    _module = require(_specifier)
    if isinstance(getattr(_module, 'logger', None), logging.Logger):
        _module.logger = _logger.getChild(_specifier)

instruction_set = InstructionSet.from_data(require({instructions!r}).INSTRUCTIONS)
app = Application(runtime=detect_runtime(globals()), timer=set_timeout)


def _load_script(ref):
    return require(ref.specifier)


def _booted(err):
    _logger.removeHandler(_handler)
    if err is not None:
        raise err


try:
    ServerExecutor(loader=_load_script).execute(instruction_set, app, callback=_booted)
except BaseException:
    _logger.removeHandler(_handler)
    raise

exports = app
'''


def _runtime_source(dotted: str) -> BundleModule:
    spec = importlib.util.find_spec(dotted)
    if spec is None or not spec.origin or not spec.origin.endswith('.py'):
        raise AdaptationError('Runtime module has no Python source', specifier=dotted)
    path = Path(spec.origin)
    return BundleModule(specifier=dotted, role=ROLE_RUNTIME, filename=str(path), source=path.read_text(encoding='utf-8'))


class BundleAdapter:
    """Turns an InstructionSet into a BundleManifest."""

    def __init__(self, runtime_modules: Sequence[str] = RUNTIME_MODULES) -> None:
        self.runtime_modules = tuple(runtime_modules)

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    def adapt(self, instruction_set: InstructionSet, expose: str = DEFAULT_EXPOSE) -> BundleManifest:
        logger.info("Adapting %d instruction(s) for bundling (expose='%s')", len(instruction_set), expose)
        app_root = Path(instruction_set.app_root)

        modules: List[BundleModule] = [_runtime_source(dotted) for dotted in self.runtime_modules]
        seen: Dict[str, str] = {}
        for ref, role in instruction_set.module_refs():
            if ref.specifier in seen:
                if seen[ref.specifier] != ref.path:
                    raise AdaptationError('Two scripts share one specifier', specifier=ref.specifier, path=ref.path)
                continue
            modules.append(self._inline_script(ref, role, app_root))
            seen[ref.specifier] = ref.path

        modules.append(BundleModule(
            specifier=INSTRUCTIONS_SPECIFIER,
            role=ROLE_INSTRUCTIONS,
            source=self._render_instructions(instruction_set),
        ))
        modules.append(BundleModule(
            specifier=MAIN_SPECIFIER,
            role=ROLE_MAIN,
            source=_MAIN_TEMPLATE.format(
                instructions=INSTRUCTIONS_SPECIFIER,
                logger_name=f'{BUNDLE_LOGGER_PREFIX}.{expose}',
                runtime=self.runtime_modules,
            ),
        ))

        manifest = BundleManifest(
            modules=tuple(modules),
            exposes=(
                ExposeBinding(specifier=MAIN_SPECIFIER, alias=expose),
                ExposeBinding(specifier=INSTRUCTIONS_SPECIFIER, alias=INSTRUCTIONS_SPECIFIER),
            ),
            main=MAIN_SPECIFIER,
        )
        logger.info("✓ Bundle manifest: %d module(s), %d script(s)", len(manifest.modules), len(seen))
        return manifest

    # ------------------------------------------------------------------ #
    def _inline_script(self, ref: ScriptRef, role: str, app_root: Path) -> BundleModule:
        path = Path(ref.path)
        if not ref.specifier.startswith('./'):
            raise AdaptationError('Script lies outside the application root', specifier=ref.specifier, path=ref.path)
        if path.suffix != '.py':
            raise AdaptationError('Only Python source scripts can be bundled', specifier=ref.specifier, path=ref.path)
        if Path(app_root, ref.specifier).resolve() != path.resolve():
            raise AdaptationError('Specifier does not resolve to the script path', specifier=ref.specifier, path=ref.path)

        try:
            source = path.read_text(encoding='utf-8')
        except (OSError, UnicodeDecodeError) as exc:
            raise AdaptationError(f'Cannot read script: {exc}', specifier=ref.specifier, path=ref.path) from exc
        try:
            compile(source, ref.path, 'exec')
        except SyntaxError as exc:
            raise AdaptationError(f'Script is not valid Python: {exc}', specifier=ref.specifier, path=ref.path) from exc

        logger.debug("Inlined %s %s", role, ref.specifier)
        return BundleModule(specifier=ref.specifier, role=role, filename=ref.path, source=source)

    @staticmethod
    def _render_instructions(instruction_set: InstructionSet) -> str:
        # python mode: YAML dates and non-string keys survive unchanged
        data = instruction_set.model_dump()
        return f"{_INSTRUCTIONS_HEADER}INSTRUCTIONS = {pprint.pformat(data, sort_dicts=False)}\n"


def configure_builder(manifest: BundleManifest, builder: Any) -> Any:
    """Hand a manifest to a bundler builder: every module, then the exposed entry points."""
    for module in manifest.modules:
        builder.add(module.specifier, module.source, filename=module.filename)
    for binding in manifest.exposes:
        builder.require(binding.specifier, expose=binding.alias)
    return builder


def compile_to_bundle(
    app_root: Path | str,
    builder: Any,
    expose: str = DEFAULT_EXPOSE,
    env: Optional[str] = None,
    **options: Any,
) -> BundleManifest:
    """
    Compile ``app_root`` and configure ``builder`` so that, once bundled and
    executed, ``require(expose)`` yields the booted application.
    """
    instruction_set = compile_instructions(app_root, env=env, **options)
    manifest = BundleAdapter().adapt(instruction_set, expose=expose)
    configure_builder(manifest, builder)
    return manifest


def adapt(instruction_set: InstructionSet, expose: str = DEFAULT_EXPOSE) -> BundleManifest:
    return BundleAdapter().adapt(instruction_set, expose=expose)
