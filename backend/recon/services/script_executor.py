"""
Run an instruction-authored transformation script against parsed tables.

Scripts are Python source executed with a restricted set of builtins and a
call surface of five functions:

    parseFiles()                 -> (data1, data2) lists of row dicts
    showResults(rows, options)   -> signal success (at most once)
    showError(message)           -> signal failure (at most once)
    findColumn(row, names)       -> fuzzy header lookup
    addAdditionalTable(html, id) -> auxiliary output, logged only

plus ``print``/``log`` routed to a logging sink. Completion is signalled
through a single-assignment cell rather than a return value. After the
synchronous body returns the executor waits up to a grace window for a late
signal, then reports exactly one ExecutionOutcome. The executor never
retries.

This is not a security boundary against a determined attacker in the same
process. It screens out malformed scripts and the obvious escape hatches.
"""
from __future__ import annotations

import ast
import asyncio
import builtins
import inspect
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

from recon.core.config import settings
from recon.core.errors import ScriptRejected
from recon.services.column_match import find_column
from recon.services.tabular_parser import ParsedTable

logger = logging.getLogger(__name__)
script_logger = logging.getLogger(f"{__name__}.script")


class ExecutionErrorKind(str, Enum):
    SCRIPT_REJECTED = "ScriptRejected"
    SCRIPT_THREW = "ScriptThrew"
    SCRIPT_REPORTED_ERROR = "ScriptReportedError"
    NO_COMPLETION_SIGNAL = "NoCompletionSignal"
    AMBIGUOUS_COMPLETION = "AmbiguousCompletion"


NO_COMPLETION_MESSAGE = "Script did not complete: no showResults or showError call"


@dataclass
class ExecutionOutcome:
    success: bool
    result_rows: Optional[list[dict[str, Any]]] = None
    error_message: Optional[str] = None
    error_kind: Optional[ExecutionErrorKind] = None
    elapsed_ms: int = 0
    logs: list[str] = field(default_factory=list)
    options: dict[str, Any] = field(default_factory=dict)
    additional_tables: list[str] = field(default_factory=list)


SAFE_BUILTIN_NAMES = (
    "abs", "all", "any", "bool", "dict", "divmod", "enumerate", "filter", "float",
    "format", "frozenset", "int", "isinstance", "len", "list", "map", "max", "min",
    "next", "range", "repr", "reversed", "round", "set", "slice", "sorted", "str",
    "sum", "tuple", "zip", "True", "False", "None",
    "Exception", "ArithmeticError", "IndexError", "KeyError", "LookupError",
    "RuntimeError", "StopIteration", "TypeError", "ValueError", "ZeroDivisionError",
)


def _safe_builtins() -> dict[str, Any]:
    return {name: getattr(builtins, name) for name in SAFE_BUILTIN_NAMES}


class _ScriptScreen(ast.NodeVisitor):
    def visit_Import(self, node: ast.Import) -> None:
        raise ScriptRejected(f"line {node.lineno}: imports are not available to scripts")

    def visit_ImportFrom(self, node: ast.ImportFrom) -> None:
        raise ScriptRejected(f"line {node.lineno}: imports are not available to scripts")

    def visit_Global(self, node: ast.Global) -> None:
        raise ScriptRejected(f"line {node.lineno}: 'global' is not allowed")

    def visit_Nonlocal(self, node: ast.Nonlocal) -> None:
        raise ScriptRejected(f"line {node.lineno}: 'nonlocal' is not allowed")

    def visit_Name(self, node: ast.Name) -> None:
        if node.id.startswith("__"):
            raise ScriptRejected(f"line {node.lineno}: name '{node.id}' is not allowed")
        self.generic_visit(node)

    def visit_Attribute(self, node: ast.Attribute) -> None:
        if node.attr.startswith("__"):
            raise ScriptRejected(f"line {node.lineno}: attribute '{node.attr}' is not allowed")
        self.generic_visit(node)


def compile_script(source: str):
    """Screen and compile a script. Raises ScriptRejected."""
    if not source or not source.strip():
        raise ScriptRejected("Script is empty")
    try:
        tree = ast.parse(source, filename="<script>", mode="exec")
    except SyntaxError as exc:
        raise ScriptRejected(f"Syntax error on line {exc.lineno}: {exc.msg}") from exc
    _ScriptScreen().visit(tree)
    return compile(tree, "<script>", "exec", flags=ast.PyCF_ALLOW_TOP_LEVEL_AWAIT)


class CompletionCell:
    """Records every signalling call; the first one decides the outcome."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._event = threading.Event()
        self.calls: list[tuple[str, Any]] = []

    def record(self, kind: str, value: Any) -> bool:
        with self._lock:
            if any(k == kind for k, _ in self.calls):
                return False
            self.calls.append((kind, value))
            self._event.set()
            return True

    def wait(self, timeout: float) -> bool:
        return self._event.wait(timeout)

    @property
    def is_set(self) -> bool:
        return self._event.is_set()


def _rows_from_matrix(matrix: list[list[Any]]) -> list[dict[str, Any]]:
    if not matrix:
        return []
    headers = matrix[0]
    rows: list[dict[str, Any]] = []
    for values in matrix[1:]:
        obj: dict[str, Any] = {}
        for idx, header in enumerate(headers):
            if header is not None and str(header).strip():
                obj[header] = values[idx] if idx < len(values) else ""
        rows.append(obj)
    return rows


def _normalize_result_rows(rows: list[Any]) -> list[dict[str, Any]]:
    if rows and all(isinstance(r, (list, tuple)) for r in rows):
        # Array format: first row is the header row.
        return _rows_from_matrix([list(r) for r in rows])
    normalized: list[dict[str, Any]] = []
    for row in rows:
        normalized.append(dict(row) if isinstance(row, dict) else {"value": row})
    return normalized


class ScriptSurface:
    """The call surface handed to one script run."""

    def __init__(self, matrix1: list[list[Any]], matrix2: Optional[list[list[Any]]]):
        self._matrix1 = matrix1
        self._matrix2 = matrix2 or []
        self._parsed: Optional[tuple[list[dict[str, Any]], list[dict[str, Any]]]] = None
        self.cell = CompletionCell()
        self.logs: list[str] = []
        self.options: dict[str, Any] = {}
        self.additional_tables: list[str] = []

    def parse_files(self) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
        if self._parsed is None:
            self._parsed = (_rows_from_matrix(self._matrix1), _rows_from_matrix(self._matrix2))
        return self._parsed

    def show_results(self, rows: Any = None, options: Optional[dict[str, Any]] = None) -> None:
        if not isinstance(rows, (list, tuple)):
            self._warn(f"showResults expected a list, got {type(rows).__name__}; showing no rows")
            rows = []
        if not self.cell.record("results", _normalize_result_rows(list(rows))):
            self._warn("showResults called more than once; later call ignored")
            return
        if isinstance(options, dict):
            self.options = dict(options)

    def show_error(self, message: Any = None) -> None:
        text = str(message) if message is not None else "Script reported an error"
        if not self.cell.record("error", text):
            self._warn("showError called more than once; later call ignored")

    def add_additional_table(self, html: Any = "", table_id: Any = None) -> None:
        table_id = str(table_id) if table_id is not None else f"table-{len(self.additional_tables) + 1}"
        self.additional_tables.append(table_id)
        logger.info("additional table id=%s chars=%d", table_id, len(str(html)))

    def log(self, *args: Any, sep: str = " ", **_: Any) -> None:
        line = sep.join(str(a) for a in args)
        self.logs.append(line)
        script_logger.info(line)

    def _warn(self, message: str) -> None:
        self.logs.append(f"WARN: {message}")
        logger.warning(message)

    def environment(self) -> dict[str, Any]:
        env_builtins = _safe_builtins()
        env_builtins["print"] = self.log
        return {
            "__builtins__": env_builtins,
            "__name__": "script",
            "parseFiles": self.parse_files,
            "showResults": self.show_results,
            "showError": self.show_error,
            "findColumn": find_column,
            "addAdditionalTable": self.add_additional_table,
            "log": self.log,
        }


def _drive_coroutine(coro: Any, timeout_s: float) -> None:
    async def _bounded() -> None:
        try:
            await asyncio.wait_for(coro, timeout=timeout_s)
        except asyncio.TimeoutError:
            logger.info("script continuation still pending after %.0fms grace window", timeout_s * 1000)

    # A private loop on a worker thread, so callers that already run an
    # event loop are not affected.
    with ThreadPoolExecutor(max_workers=1) as pool:
        pool.submit(asyncio.run, _bounded()).result()


def _exception_message(exc: BaseException) -> str:
    text = str(exc)
    return text if text else type(exc).__name__


class ScriptExecutor:
    def __init__(self, grace_ms: Optional[int] = None, clock: Callable[[], float] = time.perf_counter):
        self.grace_ms = settings.script_grace_ms if grace_ms is None else grace_ms
        self._clock = clock

    def execute(
        self,
        script: str,
        table1: ParsedTable,
        table2: Optional[ParsedTable] = None,
    ) -> ExecutionOutcome:
        started = self._clock()
        surface = ScriptSurface(table1.as_matrix(), table2.as_matrix() if table2 else None)

        def finish(outcome: ExecutionOutcome) -> ExecutionOutcome:
            outcome.elapsed_ms = int((self._clock() - started) * 1000)
            outcome.logs = surface.logs
            outcome.additional_tables = surface.additional_tables
            return outcome

        try:
            code = compile_script(script)
        except ScriptRejected as exc:
            logger.warning("script rejected: %s", exc.message)
            return finish(ExecutionOutcome(success=False, error_message=exc.message, error_kind=ExecutionErrorKind.SCRIPT_REJECTED))

        grace_s = self.grace_ms / 1000.0
        is_coroutine = bool(code.co_flags & inspect.CO_COROUTINE)
        try:
            pending = eval(code, surface.environment())  # noqa: S307
            if is_coroutine:
                _drive_coroutine(pending, grace_s)
        except Exception as exc:
            logger.info("script raised %s: %s", type(exc).__name__, exc, exc_info=logger.isEnabledFor(logging.DEBUG))
            surface.cell.record("raised", _exception_message(exc))

        # A coroutine has already had its grace window.
        if not surface.cell.is_set and not is_coroutine:
            surface.cell.wait(grace_s)

        return finish(self._resolve(surface))

    def _resolve(self, surface: ScriptSurface) -> ExecutionOutcome:
        calls = list(surface.cell.calls)
        if not calls:
            return ExecutionOutcome(success=False, error_message=NO_COMPLETION_MESSAGE, error_kind=ExecutionErrorKind.NO_COMPLETION_SIGNAL)

        results = [value for kind, value in calls if kind == "results"]
        errors = [(kind, value) for kind, value in calls if kind != "results"]

        if results and errors:
            first_kind = calls[0][0]
            logger.warning("script authoring bug: results and an error were both signalled (first=%s)", first_kind)
            surface.logs.append("WARN: both showResults and an error were signalled")
            if first_kind != "results":
                return ExecutionOutcome(
                    success=False,
                    error_message=f"Ambiguous completion: error {errors[0][1]!r} was followed by showResults",
                    error_kind=ExecutionErrorKind.AMBIGUOUS_COMPLETION,
                )

        if results:
            return ExecutionOutcome(success=True, result_rows=results[0], options=surface.options)

        kind, message = errors[0]
        error_kind = ExecutionErrorKind.SCRIPT_THREW if kind == "raised" else ExecutionErrorKind.SCRIPT_REPORTED_ERROR
        return ExecutionOutcome(success=False, error_message=message, error_kind=error_kind)


def execute_script(script: str, table1: ParsedTable, table2: Optional[ParsedTable] = None) -> ExecutionOutcome:
    return ScriptExecutor().execute(script, table1, table2)
