from __future__ import annotations

from recon.services.column_match import find_column, normalize_column_name


def test_case_and_whitespace_tolerant() -> None:
    row = {"Date": "2024-01-01", "Card Brand ": "Visa", "Amount": "10"}
    assert find_column(row, ["card brand", "payment type"]) == "Card Brand "


def test_candidate_order_takes_precedence_over_column_order() -> None:
    row = {"Payment Type": "card", "Card Brand": "Visa"}
    assert find_column(row, ["card brand", "payment type"]) == "Card Brand"


def test_substring_in_either_direction() -> None:
    assert find_column({"Total Transaction Amount": 1}, ["amount"]) == "Total Transaction Amount"
    assert find_column({"Brand": "Visa"}, ["Card Brand"]) == "Brand"


def test_no_match_and_empty_row() -> None:
    assert find_column({"Date": 1}, ["amount"]) is None
    assert find_column({}, ["amount"]) is None
    assert find_column(None, ["amount"]) is None


def test_single_name_accepted() -> None:
    assert find_column({"AMOUNT": 1}, "amount") == "AMOUNT"


def test_normalize() -> None:
    assert normalize_column_name("  PAYMENT   TYPE ") == "payment type"
