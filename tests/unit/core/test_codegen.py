"""Tests for prompt to R code generation."""

from __future__ import annotations

from typing import Any

import pytest

from rsandbox.core.codegen import AVAILABLE_PACKAGES, TEMPLATES, generate_r_code, numeric_columns
from rsandbox.core.validator import CodeValidator


def test_numeric_columns(sample_rows: list[dict[str, Any]]) -> None:
    assert numeric_columns(sample_rows) == ["value", "count"]


def test_numeric_columns_ignore_missing_and_reject_bools() -> None:
    rows = [{"a": None, "b": True, "c": 1}, {"a": 2.0, "b": False, "c": "x"}]
    assert numeric_columns(rows) == ["a"]


def test_correlation_uses_numeric_columns(sample_rows: list[dict[str, Any]]) -> None:
    code = generate_r_code("Show the correlation between variables", sample_rows)

    assert "library(corrplot)" in code
    assert 'cor(data[, c("value", "count")], use = "complete.obs")' in code


def test_correlation_needs_two_numeric_columns() -> None:
    code = generate_r_code("correlation please", [{"name": "a", "value": 1}])
    assert "summary(data)" in code


def test_scatter_uses_first_two_columns(sample_rows: list[dict[str, Any]]) -> None:
    code = generate_r_code("Make a SCATTER plot", sample_rows)

    assert "library(ggplot2)" in code
    assert 'aes(x = .data[["name"]], y = .data[["value"]])' in code


def test_histogram_uses_first_numeric_column(sample_rows: list[dict[str, Any]]) -> None:
    code = generate_r_code("histogram of the values", sample_rows)

    assert 'aes(x = .data[["value"]])' in code
    assert "geom_density" in code


def test_unmatched_prompt_falls_back_to_summary(sample_rows: list[dict[str, Any]]) -> None:
    code = generate_r_code("tell me about this data", sample_rows)

    assert "print(summary(data))" in code
    assert "str(data)" in code
    assert "print(colSums(is.na(data)))" in code


def test_column_names_are_sanitized_literals() -> None:
    rows = [{'x"]]); system("id': 1, "y": 2}]

    code = generate_r_code("scatter", rows)

    assert '.data[["x______system__id"]]' in code
    assert 'system("id' not in code


@pytest.mark.parametrize("prompt", ["correlation", "scatter", "histogram", "summary", ""])
def test_generated_code_passes_validator(prompt: str, sample_rows: list[dict[str, Any]]) -> None:
    assert CodeValidator().validate(generate_r_code(prompt, sample_rows)).safe is True


@pytest.mark.parametrize("key", sorted(TEMPLATES))
def test_templates_are_described(key: str) -> None:
    template = TEMPLATES[key]
    assert template["name"]
    assert template["description"]
    assert template["code"].startswith("#")


def test_template_catalogue() -> None:
    assert sorted(TEMPLATES) == ["correlation", "distribution", "scatter", "timeseries"]


def test_package_catalogue() -> None:
    names = [package["name"] for package in AVAILABLE_PACKAGES]
    assert names == ["ggplot2", "dplyr", "corrplot", "plotly", "forecast", "cluster", "randomForest"]
