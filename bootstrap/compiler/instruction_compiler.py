"""
Instruction Compiler
────────────────────
* Resolves per-domain configuration and boot scripts of an application root
* Emits configure/define instructions in a fixed domain precedence
* Appends execute-script instructions in boot-script order

Compilation is all-or-nothing: the first failure is wrapped in a CompileError
and no partial InstructionSet is returned.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from bootstrap.compiler.instructions import (
    DEFINE_KIND_BY_DOMAIN,
    DOMAIN_DATASOURCES,
    DOMAIN_PRECEDENCE,
    BootScriptRef,
    ConfigureInstruction,
    DefineInstruction,
    ExecuteScriptInstruction,
    InstructionSet,
    ScriptRef,
)
from bootstrap.config.compile_options import CompileOptions
from bootstrap.discovery.script_locator import BootScriptLocator, make_specifier
from bootstrap.exceptions import CompileError, ConfigParseError, DiscoveryError
from configs import config_loader

logger = logging.getLogger(__name__)

DEFAULT_MIDDLEWARE_PHASE = 'routes'
_DATASOURCE_KEYS = ('dataSource', 'datasource')


class InstructionCompiler:
    """Compile an application root into an InstructionSet."""

    def __init__(self, options: Optional[CompileOptions] = None) -> None:
        self.options = options or CompileOptions()

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    def compile(self, app_root: Path | str) -> InstructionSet:
        root = Path(app_root).resolve()
        logger.info("Compiling boot instructions for %s", root)

        try:
            resolver = config_loader.ConfigResolver(root, env=self.options.env, array_merge=self.options.array_merge)
            documents = resolver.resolve()
            scripts = self._locate_scripts(root)
            instructions = self._build_instructions(root, documents)
            instructions.extend(ExecuteScriptInstruction(script=ref) for ref in scripts)
            instruction_set = InstructionSet(app_root=str(root), env=resolver.env, instructions=tuple(instructions))
        except CompileError:
            logger.error("✗ Compilation failed for %s", root)
            raise
        except (ConfigParseError, DiscoveryError) as exc:
            logger.error("✗ Compilation failed for %s: %s", root, exc)
            raise CompileError(f'Cannot compile boot instructions: {exc.args[0]}', cause=exc) from exc
        except ValidationError as exc:
            logger.error("✗ Invalid instruction data in %s: %s", root, exc)
            raise CompileError('Configuration produced invalid instruction data', cause=exc, path=str(root)) from exc

        self._log_summary(instruction_set)
        return instruction_set

    # ------------------------------------------------------------------ #
    # Discovery
    # ------------------------------------------------------------------ #
    def _locate_scripts(self, root: Path) -> List[BootScriptRef]:
        locator = BootScriptLocator(root, directory=self.options.boot_dir, recursive=self.options.recursive)
        if self.options.boot_scripts is not None:
            return locator.locate_explicit(self.options.boot_scripts)
        return locator.locate()

    # ------------------------------------------------------------------ #
    # Instruction building
    # ------------------------------------------------------------------ #
    def _build_instructions(self, root: Path, documents: Dict[str, Any]) -> List[Any]:
        instructions: List[Any] = []
        defined: Dict[str, List[str]] = {}

        for domain in DOMAIN_PRECEDENCE:
            document = documents[domain]
            instructions.append(ConfigureInstruction(domain=domain, entries=document.entries))

            kind = DEFINE_KIND_BY_DOMAIN.get(domain)
            if kind is None:
                continue

            names: List[str] = []
            for name, entry in document.entries.items():
                if str(name).startswith('_'):
                    continue
                definition = self._normalize_entry(kind, str(name), entry, document, defined)
                script = self._script_ref(root, document.scripts.get(name))
                instructions.append(DefineInstruction(kind=kind, name=str(name), definition=definition, script=script))
                names.append(str(name))
            defined[domain] = names
            logger.debug("Domain %s: %d definition(s) %s", domain, len(names), names)

        return instructions

    def _normalize_entry(
        self,
        kind: str,
        name: str,
        entry: Any,
        document: Any,
        defined: Dict[str, List[str]],
    ) -> Dict[str, Any]:
        if entry is None:
            entry = {}
        if not isinstance(entry, dict):
            raise CompileError(
                f"{kind} '{name}' must be a mapping, got {type(entry).__name__}",
                domain=document.domain, path=document.source_path,
            )

        definition = dict(entry)
        if kind == 'model':
            for key in _DATASOURCE_KEYS:
                ds_name = definition.get(key)
                if ds_name is not None and ds_name not in defined.get(DOMAIN_DATASOURCES, []):
                    raise CompileError(
                        f"Model '{name}' is referencing a dataSource '{ds_name}' that does not exist",
                        domain=document.domain, path=document.source_path,
                    )
        elif kind == 'middleware':
            definition.setdefault('phase', DEFAULT_MIDDLEWARE_PHASE)
        return definition

    @staticmethod
    def _script_ref(root: Path, path: Optional[str]) -> Optional[ScriptRef]:
        if path is None:
            return None
        fp = Path(path)
        return ScriptRef(path=str(fp), specifier=make_specifier(fp, root) or fp.as_posix())

    # ------------------------------------------------------------------ #
    @staticmethod
    def _log_summary(instruction_set: InstructionSet) -> None:
        counts: Dict[str, int] = {}
        for instruction in instruction_set.instructions:
            counts[instruction.type] = counts.get(instruction.type, 0) + 1
        logger.info("✓ Compiled %d instruction(s): %s", len(instruction_set), counts)


def compile_instructions(app_root: Path | str, env: Optional[str] = None, **options: Any) -> InstructionSet:
    """
    Compile ``app_root`` into boot instructions.

    Args:
        app_root: Application root directory
        env: Environment overlay name; defaults to the BOOT_ENV variable
        **options: Remaining CompileOptions fields

    Returns:
        The compiled, immutable InstructionSet
    """
    return InstructionCompiler(CompileOptions.from_params(env=env, **options)).compile(app_root)
