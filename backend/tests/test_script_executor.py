"""Script executor tests."""

from __future__ import annotations

import textwrap
from typing import Callable

import pytest

from recon.services.script_executor import ExecutionErrorKind, ScriptExecutor
from recon.services.tabular_parser import ParsedTable


@pytest.fixture
def executor() -> ScriptExecutor:
    return ScriptExecutor(grace_ms=50)


@pytest.fixture
def sales(make_table: Callable[..., ParsedTable]) -> ParsedTable:
    return make_table(
        ["Date", "Card Brand ", "Amount"],
        [["2024-01-01", "Visa", "10"], ["2024-01-01", "Amex", "5"], ["2024-01-02", "Visa", "7"]],
    )


def _script(body: str) -> str:
    return textwrap.dedent(body).strip() + "\n"


def test_count_rows(executor: ScriptExecutor, sales: ParsedTable) -> None:
    script = _script(
        """
        data1, data2 = parseFiles()
        showResults([{"Rows": len(data1)}])
        """
    )
    outcome = executor.execute(script, sales)
    assert outcome.success is True
    assert outcome.result_rows == [{"Rows": 3}]
    assert outcome.error_kind is None


def test_group_by_card_brand(executor: ScriptExecutor, sales: ParsedTable) -> None:
    script = _script(
        """
        data1, _ = parseFiles()
        brand = findColumn(data1[0], ["card brand", "payment type"])
        amount = findColumn(data1[0], ["amount"])
        totals = {}
        for row in data1:
            totals[row[brand]] = totals.get(row[brand], 0) + float(row[amount])
        showResults([{"Card Brand": k, "Total": v} for k, v in sorted(totals.items())], {"title": "By brand"})
        """
    )
    outcome = executor.execute(script, sales)
    assert outcome.success is True
    assert outcome.result_rows == [{"Card Brand": "Amex", "Total": 5.0}, {"Card Brand": "Visa", "Total": 17.0}]
    assert outcome.options == {"title": "By brand"}


def test_two_tables(executor: ScriptExecutor, make_table: Callable[..., ParsedTable], sales: ParsedTable) -> None:
    other = make_table(["Brand"], [["Visa"]], filename="other.csv")
    script = "a, b = parseFiles()\nshowResults([{'left': len(a), 'right': len(b)}])\n"
    outcome = executor.execute(script, sales, other)
    assert outcome.result_rows == [{"left": 3, "right": 1}]


def test_no_signal_times_out_after_grace(executor: ScriptExecutor, sales: ParsedTable) -> None:
    outcome = executor.execute("x = 1 + 1\n", sales)
    assert outcome.success is False
    assert outcome.error_kind is ExecutionErrorKind.NO_COMPLETION_SIGNAL
    assert outcome.elapsed_ms >= 40


def test_exception_becomes_failure(executor: ScriptExecutor, sales: ParsedTable) -> None:
    outcome = executor.execute("raise ValueError('column missing')\n", sales)
    assert outcome.success is False
    assert outcome.error_kind is ExecutionErrorKind.SCRIPT_THREW
    assert outcome.error_message == "column missing"


def test_show_error(executor: ScriptExecutor, sales: ParsedTable) -> None:
    outcome = executor.execute("showError('Primary dataset is empty')\n", sales)
    assert outcome.success is False
    assert outcome.error_kind is ExecutionErrorKind.SCRIPT_REPORTED_ERROR
    assert outcome.error_message == "Primary dataset is empty"


def test_results_first_then_error_is_success(executor: ScriptExecutor, sales: ParsedTable) -> None:
    outcome = executor.execute("showResults([{'a': 1}])\nshowError('late')\n", sales)
    assert outcome.success is True
    assert outcome.result_rows == [{"a": 1}]
    assert any("both" in line for line in outcome.logs)


def test_error_first_then_results_is_ambiguous(executor: ScriptExecutor, sales: ParsedTable) -> None:
    outcome = executor.execute("showError('nope')\nshowResults([{'a': 1}])\n", sales)
    assert outcome.success is False
    assert outcome.error_kind is ExecutionErrorKind.AMBIGUOUS_COMPLETION


def test_second_show_results_ignored(executor: ScriptExecutor, sales: ParsedTable) -> None:
    outcome = executor.execute("showResults([{'a': 1}])\nshowResults([{'a': 2}])\n", sales)
    assert outcome.result_rows == [{"a": 1}]
    assert any("more than once" in line for line in outcome.logs)


def test_non_list_results_coerced_to_empty(executor: ScriptExecutor, sales: ParsedTable) -> None:
    outcome = executor.execute("showResults('done')\n", sales)
    assert outcome.success is True
    assert outcome.result_rows == []
    assert any(line.startswith("WARN") for line in outcome.logs)


def test_array_format_results(executor: ScriptExecutor, sales: ParsedTable) -> None:
    script = "showResults([['Card Brand', 'Count'], ['Visa', 2], ['Amex', 1]])\n"
    outcome = executor.execute(script, sales)
    assert outcome.result_rows == [{"Card Brand": "Visa", "Count": 2}, {"Card Brand": "Amex", "Count": 1}]


def test_top_level_await(executor: ScriptExecutor, sales: ParsedTable) -> None:
    script = _script(
        """
        async def main():
            data1, _ = parseFiles()
            showResults([{"Rows": len(data1)}])

        await main()
        """
    )
    outcome = executor.execute(script, sales)
    assert outcome.success is True
    assert outcome.result_rows == [{"Rows": 3}]


def test_exception_inside_coroutine(executor: ScriptExecutor, sales: ParsedTable) -> None:
    script = "async def main():\n    raise KeyError('Amount')\n\nawait main()\n"
    outcome = executor.execute(script, sales)
    assert outcome.error_kind is ExecutionErrorKind.SCRIPT_THREW


def test_parse_files_is_idempotent(executor: ScriptExecutor, sales: ParsedTable) -> None:
    script = "first = parseFiles()\nsecond = parseFiles()\nshowResults([{'same': first is second}])\n"
    outcome = executor.execute(script, sales)
    assert outcome.result_rows == [{"same": True}]


def test_print_and_log_are_captured(executor: ScriptExecutor, sales: ParsedTable) -> None:
    outcome = executor.execute("print('loaded', 3, 'rows')\nlog('done')\nshowResults([])\n", sales)
    assert outcome.logs[:2] == ["loaded 3 rows", "done"]


def test_additional_table_is_recorded(executor: ScriptExecutor, sales: ParsedTable) -> None:
    outcome = executor.execute("addAdditionalTable('<table></table>', 'summary')\nshowResults([])\n", sales)
    assert outcome.additional_tables == ["summary"]


@pytest.mark.parametrize(
    "script",
    [
        "import os\nshowResults([])\n",
        "from os import path\n",
        "showResults(().__class__.__bases__)\n",
        "x = __builtins__\n",
        "def f(:\n",
        "   \n",
    ],
)
def test_rejected_scripts(executor: ScriptExecutor, sales: ParsedTable, script: str) -> None:
    outcome = executor.execute(script, sales)
    assert outcome.success is False
    assert outcome.error_kind is ExecutionErrorKind.SCRIPT_REJECTED


def test_ambient_globals_are_not_visible(executor: ScriptExecutor, sales: ParsedTable) -> None:
    outcome = executor.execute("open('/etc/passwd')\n", sales)
    assert outcome.error_kind is ExecutionErrorKind.SCRIPT_THREW
    assert "open" in outcome.error_message
