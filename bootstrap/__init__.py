# bootstrap/__init__.py
from __future__ import annotations

from .exceptions import *
from .compiler.instructions import (
    BootScriptRef,
    ConfigureInstruction,
    DefineInstruction,
    ExecuteScriptInstruction,
    InstructionSet,
    ScriptRef,
)
from .compiler.instruction_compiler import InstructionCompiler, compile_instructions
from .config.compile_options import CompileOptions
from .discovery.script_locator import BootScriptLocator
from .application import Application, DataSource, Model
from .core.executor import ExecutionSummary, InstructionResult, ServerExecutor, execute
from .bundling.manifest import BundleManifest, BundleModule, ExposeBinding
from .bundling.adapter import BundleAdapter, adapt, compile_to_bundle, configure_builder
from .bundling.bundler import SourceBundler, write_bundle

compile = compile_instructions

__version__ = '1.0.0'
__description__ = 'Boot compiler - declarative config and boot scripts to boot instructions'

__all__ = [
    'compile', 'compile_instructions', 'InstructionCompiler', 'CompileOptions',
    'BootScriptLocator',
    'InstructionSet', 'ConfigureInstruction', 'DefineInstruction', 'ExecuteScriptInstruction',
    'BootScriptRef', 'ScriptRef',
    'Application', 'DataSource', 'Model',
    'ServerExecutor', 'ExecutionSummary', 'InstructionResult', 'execute',
    'BundleAdapter', 'BundleManifest', 'BundleModule', 'ExposeBinding',
    'adapt', 'compile_to_bundle', 'configure_builder', 'SourceBundler', 'write_bundle',
    'BootError', 'ConfigParseError', 'DiscoveryError', 'CompileError',
    'ExecutionError', 'AdaptationError',
    '__version__', '__description__',
]
