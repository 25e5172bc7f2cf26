"""
Server Executor - applies an InstructionSet to an application instance.

Instructions run strictly in sequence. A boot script may complete
synchronously, through a ``done`` callback, or by returning an awaitable; the
executor suspends until the current instruction signals completion. The first
failure aborts the remaining sequence and nothing is rolled back.
"""

import asyncio
import hashlib
import importlib.util
import inspect
import logging
import threading
import time
from dataclasses import dataclass, field
from types import ModuleType
from typing import Any, Callable, List, Optional

from bootstrap.compiler.instructions import (
    ConfigureInstruction,
    DefineInstruction,
    ExecuteScriptInstruction,
    InstructionSet,
    ScriptRef,
)
from bootstrap.exceptions import ExecutionError

logger = logging.getLogger(__name__)

BOOT_FUNCTION = 'boot'
CUSTOMIZE_FUNCTION = 'customize'

ScriptLoader = Callable[[ScriptRef], Any]
Completion = Callable[[Optional[BaseException]], None]


def load_script_from_path(ref: ScriptRef) -> ModuleType:
    """Load a script by file path, without registering it in ``sys.modules``."""
    digest = hashlib.sha1(ref.path.encode('utf-8')).hexdigest()[:12]
    spec = importlib.util.spec_from_file_location(f'_boot_script_{digest}', ref.path)
    if spec is None or spec.loader is None:
        raise ImportError(f'Cannot load script {ref.path}')
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def _positional_arity(fn: Callable[..., Any]) -> int:
    """Number of required positional parameters; optional ones never receive ``done``."""
    try:
        params = inspect.signature(fn).parameters.values()
    except (TypeError, ValueError):
        return 1
    if any(p.kind == p.VAR_POSITIONAL for p in params):
        return 2
    return sum(
        1 for p in params
        if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD) and p.default is p.empty
    )


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


@dataclass
class InstructionResult:
    """Result of applying a single instruction."""
    index: int
    description: str
    success: bool
    duration_seconds: float
    error: Optional[str] = None


@dataclass
class ExecutionSummary:
    """Summary of one boot run."""
    total_instructions: int
    results: List[InstructionResult] = field(default_factory=list)
    total_duration: float = 0.0
    error: Optional[ExecutionError] = None

    @property
    def success(self) -> bool:
        return self.error is None and len(self.results) == self.total_instructions

    @property
    def completed_instructions(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def skipped_instructions(self) -> int:
        return self.total_instructions - len(self.results)


class _Completion:
    """The one-shot ``done`` callback handed to a single instruction."""

    def __init__(self, run: '_BootRun', index: int) -> None:
        self.run = run
        self.index = index
        self.signalled = False
        self._lock = threading.Lock()

    def __call__(self, err: Optional[BaseException] = None) -> None:
        with self._lock:
            if self.signalled:
                logger.warning('Completion for instruction #%d signalled more than once - ignored', self.index)
                return
            self.signalled = True
        if self.run.loop is not None:
            self.run.loop.call_soon_threadsafe(self.run._on_done, self.index, err)
        else:
            self.run._on_done(self.index, err)


class _BootRun:
    """
    One pass over an InstructionSet.

    ``_advance`` loops while instructions complete synchronously and returns
    when one suspends; its completion callback resumes the loop.
    """

    def __init__(
        self,
        executor: 'ServerExecutor',
        instruction_set: InstructionSet,
        app: Any,
        on_finish: Callable[[Optional[ExecutionError], ExecutionSummary], None],
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        self.executor = executor
        self.instructions = instruction_set.instructions
        self.app = app
        self.on_finish = on_finish
        self.loop = loop
        self.index = 0
        self.summary = ExecutionSummary(total_instructions=len(self.instructions))
        self._started_at = 0.0
        self._step_started_at = 0.0
        self._pending = False
        self._running = False
        self._finished = False
        self._error: Optional[ExecutionError] = None
        # guards the cursor against completions arriving from timer threads
        self._lock = threading.RLock()

    def start(self) -> None:
        logger.info('Executing %d boot instruction(s)', len(self.instructions))
        self._started_at = time.perf_counter()
        self.app.booting = True
        self._advance()

    # ------------------------------------------------------------------ #
    def _advance(self) -> None:
        with self._lock:
            self._running = True
            try:
                while self._error is None and self.index < len(self.instructions):
                    self._pending = True
                    self._step_started_at = time.perf_counter()
                    instruction = self.instructions[self.index]
                    done = self._make_done(self.index)
                    try:
                        self.executor.apply(instruction, self.app, done, self.loop)
                    except Exception as exc:
                        if done.signalled:
                            # raised after completion was already signalled
                            self._fail(done.index, exc)
                        else:
                            done(exc)
                    if self._pending:
                        logger.debug('Instruction #%d suspended: %s', self.index, instruction.describe())
                        return
            finally:
                self._running = False
            # outside the try block so errors raised by on_finish reach the caller
            self._finish(self._error)

    def _make_done(self, index: int) -> '_Completion':
        return _Completion(self, index)

    def _on_done(self, index: int, err: Optional[BaseException]) -> None:
        with self._lock:
            self._record_completion(index, err)

    def _fail(self, index: int, err: BaseException) -> None:
        """Abort at ``index``; replaces a success already recorded for it."""
        instruction = self.instructions[index]
        duration = time.perf_counter() - self._step_started_at
        self._pending = False
        self.summary.results = [r for r in self.summary.results if r.index != index]
        logger.error('✗ Instruction #%d failed: %s - %s', index, instruction.describe(), err)
        self.summary.results.append(
            InstructionResult(index, instruction.describe(), False, duration, f'{type(err).__name__}: {err}')
        )
        cause = err.cause if isinstance(err, ExecutionError) else err
        self._error = ExecutionError(f'Boot failed at {instruction.describe()}', index, instruction, cause)

    def _record_completion(self, index: int, err: Optional[BaseException]) -> None:
        if self._finished or index != self.index:
            return
        instruction = self.instructions[index]
        duration = time.perf_counter() - self._step_started_at
        self._pending = False

        if err is not None:
            self._fail(index, err)
        else:
            logger.debug('✓ Instruction #%d: %s (%.3fs)', index, instruction.describe(), duration)
            self.summary.results.append(InstructionResult(index, instruction.describe(), True, duration))
            self.index += 1
        if not self._running:
            self._advance()

    def _finish(self, error: Optional[ExecutionError]) -> None:
        self._finished = True
        self.app.booting = False
        self.summary.total_duration = time.perf_counter() - self._started_at
        self.summary.error = error
        self.executor._log_execution_summary(self.summary)
        if error is None and hasattr(self.app, 'emit'):
            self.app.emit('booted')
        self.on_finish(error, self.summary)


class ServerExecutor:
    """
    Applies boot instructions to an application in the current process.

    Each instruction type has exactly one handler. Scripts are loaded through
    ``loader`` (file path by default; a bundle passes its own ``require``).
    """

    def __init__(self, loader: Optional[ScriptLoader] = None) -> None:
        self.loader = loader or load_script_from_path
        self.last_summary: Optional[ExecutionSummary] = None

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    def execute(
        self,
        instruction_set: InstructionSet,
        app: Any,
        callback: Optional[Completion] = None,
        timeout: Optional[float] = None,
    ) -> Optional[ExecutionSummary]:
        """
        Boot ``app`` from ``instruction_set``.

        With ``callback`` the outcome is delivered as ``callback(err)`` once the
        last instruction completes (possibly later, from a timer) and None is
        returned. Without it, the call blocks until the run finishes, raises
        ExecutionError on failure and returns the ExecutionSummary; blocking
        from inside a running event loop raises RuntimeError.
        """
        if callback is not None:
            def _deliver(error: Optional[ExecutionError], summary: ExecutionSummary) -> None:
                self.last_summary = summary
                callback(error)

            _BootRun(self, instruction_set, app, _deliver).start()
            return None

        if _running_loop() is not None:
            raise RuntimeError(
                'execute() would block the running event loop its deferred work needs; '
                'use "await execute_async()" or pass a callback'
            )

        finished = threading.Event()
        outcome: List[Any] = []

        def _record(error: Optional[ExecutionError], summary: ExecutionSummary) -> None:
            self.last_summary = summary
            outcome.extend([error, summary])
            finished.set()

        _BootRun(self, instruction_set, app, _record).start()
        if not finished.wait(timeout):
            raise ExecutionError(f'Boot did not complete within {timeout}s', index=-1)
        error, summary = outcome
        if error is not None:
            raise error
        return summary

    async def execute_async(self, instruction_set: InstructionSet, app: Any) -> ExecutionSummary:
        """Asyncio variant; ``async def boot(app)`` scripts are awaited."""
        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()

        def _resolve(error: Optional[ExecutionError], summary: ExecutionSummary) -> None:
            self.last_summary = summary
            if future.done():
                return
            if error is not None:
                future.set_exception(error)
            else:
                future.set_result(summary)

        _BootRun(self, instruction_set, app, _resolve, loop=loop).start()
        return await future

    # ------------------------------------------------------------------ #
    # Instruction handlers
    # ------------------------------------------------------------------ #
    def apply(
        self,
        instruction: Any,
        app: Any,
        done: Completion,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        if isinstance(instruction, ConfigureInstruction):
            app.configure(instruction.domain, instruction.entries)
            done(None)
        elif isinstance(instruction, DefineInstruction):
            self._define(instruction, app)
            done(None)
        elif isinstance(instruction, ExecuteScriptInstruction):
            self._run_script(instruction, app, done, loop)
        else:
            raise TypeError(f'Unknown instruction type: {type(instruction).__name__}')

    def _define(self, instruction: DefineInstruction, app: Any) -> None:
        if instruction.kind == 'datasource':
            app.data_source(instruction.name, instruction.definition)
        elif instruction.kind == 'middleware':
            app.middleware(instruction.name, instruction.definition)
        else:
            model = app.model(instruction.name, instruction.definition)
            if instruction.script is not None:
                self._customize(instruction.script, model, app)

    def _customize(self, ref: ScriptRef, model: Any, app: Any) -> None:
        module = self.loader(ref)
        customize = getattr(module, CUSTOMIZE_FUNCTION, None)
        if customize is None:
            logger.debug("Model script %s exports no %s()", ref.specifier, CUSTOMIZE_FUNCTION)
            return
        if _positional_arity(customize) >= 2:
            customize(model, app)
        else:
            customize(model)
        logger.debug("Model '%s' customized by %s", model.name, ref.specifier)

    def _run_script(
        self,
        instruction: ExecuteScriptInstruction,
        app: Any,
        done: Completion,
        loop: Optional[asyncio.AbstractEventLoop],
    ) -> None:
        ref = instruction.script
        module = self.loader(ref)
        boot = getattr(module, BOOT_FUNCTION, None)
        if boot is None:
            logger.debug('Boot script %s has no %s() - module body only', ref.specifier, BOOT_FUNCTION)
            done(None)
            return

        if _positional_arity(boot) >= 2:
            boot(app, done)
            return

        result = boot(app)
        if not inspect.isawaitable(result):
            done(None)
            return
        if loop is None:
            if inspect.iscoroutine(result):
                result.close()
            raise TypeError(f'Boot script {ref.specifier} is asynchronous; use execute_async()')

        task = asyncio.ensure_future(result, loop=loop)

        def _on_task_done(t: asyncio.Future) -> None:
            if t.cancelled():
                done(asyncio.CancelledError(f'Boot script {ref.specifier} was cancelled'))
            else:
                done(t.exception())

        task.add_done_callback(_on_task_done)

    # ------------------------------------------------------------------ #
    def _log_execution_summary(self, summary: ExecutionSummary) -> None:
        logger.info('=== Boot Execution Summary ===')
        logger.info(f'Total instructions: {summary.total_instructions}')
        logger.info(f'Completed: {summary.completed_instructions}')
        logger.info(f'Skipped: {summary.skipped_instructions}')
        logger.info(f'Total duration: {summary.total_duration:.3f}s')
        if summary.error is not None:
            logger.error(f'Boot aborted: {summary.error}')
        logger.info('=== End Boot Execution Summary ===')


def execute(
    instruction_set: InstructionSet,
    app: Any,
    callback: Optional[Completion] = None,
    loader: Optional[ScriptLoader] = None,
) -> Optional[ExecutionSummary]:
    """Convenience wrapper around ServerExecutor.execute."""
    return ServerExecutor(loader).execute(instruction_set, app, callback)
