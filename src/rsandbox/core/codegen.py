"""
Prompt and chart config to R code templating.

A keyword match on the prompt picks one of a few analysis templates and fills
in column names from the dataset. Chart configs from the visualization
endpoints map onto ggplot2, plotly or base graphics calls the same way. Column names go through the same
sanitization as the dataset loader and are only ever interpolated as quoted
string literals, so every generated program passes the code validator.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from rsandbox.core.exceptions import VisualizationConfigError
from rsandbox.core.validator import column_names, r_string_literal, sanitize_variable_name

# ============================================
# CATALOGUES
# ============================================

AVAILABLE_PACKAGES: list[dict[str, str]] = [
    {"name": "ggplot2", "description": "Create elegant data visualizations"},
    {"name": "dplyr", "description": "Data manipulation"},
    {"name": "corrplot", "description": "Correlation matrices"},
    {"name": "plotly", "description": "Interactive visualizations"},
    {"name": "forecast", "description": "Time series forecasting"},
    {"name": "cluster", "description": "Clustering algorithms"},
    {"name": "randomForest", "description": "Random forest models"},
]

#: Starting points offered to editors; placeholders in braces
TEMPLATES: dict[str, dict[str, str]] = {
    "correlation": {
        "name": "Correlation Matrix",
        "description": "Create a correlation matrix visualization",
        "code": (
            "# Correlation matrix\n"
            "library(corrplot)\n"
            "cor_matrix <- cor(Filter(is.numeric, data), use = \"complete.obs\")\n"
            "corrplot(cor_matrix, method = \"circle\", type = \"upper\",\n"
            "         order = \"hclust\", tl.cex = 0.8, tl.col = \"black\")"
        ),
    },
    "scatter": {
        "name": "Scatter Plot",
        "description": "Create a scatter plot with trend line",
        "code": (
            "# Scatter plot with trend line\n"
            "library(ggplot2)\n"
            "ggplot(data, aes(x = .data[[\"{x_var}\"]], y = .data[[\"{y_var}\"]])) +\n"
            "  geom_point(alpha = 0.6) +\n"
            "  geom_smooth(method = \"lm\", se = TRUE) +\n"
            "  theme_minimal() +\n"
            "  labs(title = \"Scatter Plot with Trend Line\")"
        ),
    },
    "distribution": {
        "name": "Distribution Plot",
        "description": "Visualize data distribution",
        "code": (
            "# Distribution plot\n"
            "library(ggplot2)\n"
            "ggplot(data, aes(x = .data[[\"{variable}\"]])) +\n"
            "  geom_histogram(aes(y = after_stat(density)), bins = 30, fill = \"skyblue\", alpha = 0.7) +\n"
            "  geom_density(color = \"red\", linewidth = 1) +\n"
            "  theme_minimal() +\n"
            "  labs(title = \"Distribution of {variable}\")"
        ),
    },
    "timeseries": {
        "name": "Time Series",
        "description": "Time series visualization and decomposition",
        "code": (
            "# Time series analysis\n"
            "library(forecast)\n"
            "ts_data <- ts(data[[\"{variable}\"]], frequency = 12)\n"
            "plot(ts_data, main = \"Time Series Plot\")\n"
            "decomposed <- decompose(ts_data)\n"
            "plot(decomposed)"
        ),
    },
}

# ============================================
# GENERATION
# ============================================


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def numeric_columns(rows: Sequence[Mapping[str, Any]]) -> list[str]:
    """Columns whose present values are all numbers (at least one present)."""
    numeric = []
    for column in column_names(rows):
        values = [row[column] for row in rows if row.get(column) is not None]
        if values and all(_is_number(value) for value in values):
            numeric.append(column)
    return numeric


def _column(name: str) -> str:
    """Quoted, sanitized column reference matching the loaded data.frame."""
    return r_string_literal(sanitize_variable_name(name))


def _correlation(columns: Sequence[str]) -> str:
    selected = ", ".join(_column(c) for c in columns)
    return (
        "library(corrplot)\n"
        f"cor_matrix <- cor(data[, c({selected})], use = \"complete.obs\")\n"
        "print(round(cor_matrix, 2))\n"
        "corrplot(cor_matrix, method = \"circle\", type = \"upper\",\n"
        "         order = \"hclust\", tl.cex = 0.8, tl.col = \"black\",\n"
        "         title = \"Correlation Matrix\", mar = c(0, 0, 1, 0))"
    )


def _scatter(x: str, y: str) -> str:
    x_ref, y_ref = _column(x), _column(y)
    return (
        "library(ggplot2)\n"
        f"p <- ggplot(data, aes(x = .data[[{x_ref}]], y = .data[[{y_ref}]])) +\n"
        "  geom_point(alpha = 0.7, size = 3) +\n"
        "  geom_smooth(method = \"lm\", se = TRUE, color = \"blue\") +\n"
        "  theme_minimal() +\n"
        f"  labs(title = paste(\"Scatter Plot:\", {x_ref}, \"vs\", {y_ref}),\n"
        f"       x = {x_ref}, y = {y_ref})\n"
        "print(p)"
    )


def _histogram(column: str) -> str:
    ref = _column(column)
    return (
        "library(ggplot2)\n"
        f"p <- ggplot(data, aes(x = .data[[{ref}]])) +\n"
        "  geom_histogram(aes(y = after_stat(density)), bins = 30,\n"
        "                 fill = \"lightblue\", color = \"black\", alpha = 0.7) +\n"
        "  geom_density(color = \"red\", linewidth = 1) +\n"
        "  theme_minimal() +\n"
        f"  labs(title = paste(\"Distribution of\", {ref}),\n"
        f"       x = {ref}, y = \"Density\")\n"
        "print(p)"
    )


def _summary() -> str:
    return (
        'cat("Data Summary:\\n")\n'
        'cat("============\\n")\n'
        "print(summary(data))\n"
        'cat("\\nData Structure:\\n")\n'
        'cat("===============\\n")\n'
        "str(data)\n"
        'cat("\\nMissing Values:\\n")\n'
        'cat("===============\\n")\n'
        "print(colSums(is.na(data)))"
    )


def generate_r_code(prompt: str, data: Sequence[Mapping[str, Any]]) -> str:
    """Pick a template by keyword and fill it from the dataset's columns.

    'correlation' needs two numeric columns, 'scatter' two columns and
    'histogram' one numeric column; anything else, or a dataset that cannot
    satisfy the chosen template, falls back to a summary.
    """
    wanted = prompt.lower()

    if "correlation" in wanted:
        numeric = numeric_columns(data)
        if len(numeric) >= 2:
            return _correlation(numeric)

    if "scatter" in wanted:
        columns = column_names(data)
        if len(columns) >= 2:
            return _scatter(columns[0], columns[1])

    if "histogram" in wanted:
        numeric = numeric_columns(data)
        if numeric:
            return _histogram(numeric[0])

    return _summary()


# ============================================
# VISUALIZATIONS
# ============================================

VISUALIZATION_KINDS: tuple[str, ...] = ("ggplot", "plotly", "base")

MAX_SUGGESTIONS = 10

_GGPLOT_GEOMS: dict[str, str] = {
    "scatter": "geom_point(alpha = 0.7)",
    "line": "geom_line()",
    "histogram": "geom_histogram(bins = 30)",
    "boxplot": "geom_boxplot()",
}

_PLOTLY_TRACES: dict[str, str] = {
    "scatter": 'type = "scatter", mode = "markers"',
    "line": 'type = "scatter", mode = "lines"',
    "bar": 'type = "bar"',
    "3d": 'type = "scatter3d", mode = "markers"',
}

_BASE_TITLES: dict[str, str] = {
    "scatter": "Scatter Plot",
    "histogram": "Histogram",
    "boxplot": "Box Plot",
}


@dataclass(frozen=True)
class ChartSuggestion:
    type: str
    title: str
    description: str
    config: dict[str, str] = field(default_factory=dict)
    required_columns: list[str] = field(default_factory=list)


class _ChartColumns:
    """Resolves config fields to quoted column references, checked against the dataset."""

    def __init__(self, config: Mapping[str, Any], data: Sequence[Mapping[str, Any]]) -> None:
        self.config = config
        self.known = {sanitize_variable_name(column) for column in column_names(data)}

    def ref(self, field_name: str, required: bool = False) -> str | None:
        name = self.config.get(field_name)
        if not name:
            if required:
                raise VisualizationConfigError(f"'{field_name}' is required", field_name)
            return None
        column = sanitize_variable_name(str(name))
        if self.known and column not in self.known:
            raise VisualizationConfigError(f"unknown column '{name}'", field_name)
        return r_string_literal(column)

    def title(self, default: str) -> str:
        return r_string_literal(str(self.config.get("title") or default))


def _ggplot_chart(columns: _ChartColumns, chart: str) -> str:
    x = columns.ref("x", required=True)
    y = None if chart == "histogram" else columns.ref("y", required=chart != "bar")
    color = columns.ref("color")
    facet = columns.ref("facet")

    aes = [f"x = .data[[{x}]]"]
    if y:
        aes.append(f"y = .data[[{y}]]")
    if color:
        aes.append(f"color = .data[[{color}]]")

    if chart == "bar":
        geom = 'geom_bar(stat = "identity")' if y else "geom_bar()"
    else:
        geom = _GGPLOT_GEOMS.get(chart, "geom_point()")

    layers = [f"ggplot(data, aes({', '.join(aes)}))", geom]
    if facet:
        layers.append(f"facet_wrap(vars(.data[[{facet}]]))")
    layers += ["theme_minimal()", f"labs(title = {columns.title('Visualization')})"]
    return "library(ggplot2)\np <- " + " +\n  ".join(layers) + "\nprint(p)"


def _plotly_chart(columns: _ChartColumns, chart: str) -> str:
    args = [
        f"x = data[[{columns.ref('x', required=True)}]]",
        f"y = data[[{columns.ref('y', required=True)}]]",
    ]
    if chart == "3d":
        args.append(f"z = data[[{columns.ref('z', required=True)}]]")
    if chart in _PLOTLY_TRACES:
        args.append(_PLOTLY_TRACES[chart])
    return (
        "library(plotly)\n"
        f"p <- plot_ly(data, {', '.join(args)}) %>%\n"
        f"  layout(title = {columns.title('Interactive Visualization')})\n"
        "print(p)"
    )


def _base_chart(columns: _ChartColumns, chart: str) -> str:
    title = columns.title(_BASE_TITLES.get(chart, "Plot"))
    x = columns.ref("x", required=True)
    if chart == "histogram":
        return f"hist(data[[{x}]], main = {title}, xlab = {x})"
    y = columns.ref("y", required=True)
    if chart == "boxplot":
        return f"boxplot(data[[{y}]] ~ data[[{x}]], main = {title}, xlab = {x}, ylab = {y})"
    return f"plot(data[[{x}]], data[[{y}]], main = {title}, xlab = {x}, ylab = {y})"


def generate_visualization_code(kind: str, config: Mapping[str, Any], data: Sequence[Mapping[str, Any]]) -> str:
    """R code drawing one chart of `data` with ggplot2, plotly or base graphics.

    `config` names the columns (x, y, z, color, facet), the chart_type and an
    optional title. Columns are checked against the dataset when it has rows
    and are referenced only as quoted literals.

    Raises:
        VisualizationConfigError: Unknown kind, a required column missing, or
            a column the dataset does not have.
    """
    chart = str(config.get("chart_type") or "scatter").lower()
    columns = _ChartColumns(config, data)
    if kind == "ggplot":
        return _ggplot_chart(columns, chart)
    if kind == "plotly":
        return _plotly_chart(columns, chart)
    if kind == "base":
        return _base_chart(columns, chart)
    raise VisualizationConfigError(f"unsupported visualization type '{kind}'", "type")


def _is_date(value: str) -> bool:
    try:
        datetime.fromisoformat(value)
    except ValueError:
        return False
    return True


def infer_column_types(rows: Sequence[Mapping[str, Any]]) -> dict[str, str]:
    """Classify each column as numeric, date, categorical or unknown from its present values."""
    types: dict[str, str] = {}
    for column in column_names(rows):
        values = [row[column] for row in rows if row.get(column) is not None]
        if values and all(_is_number(value) for value in values):
            types[column] = "numeric"
        elif values and all(isinstance(value, str) for value in values):
            types[column] = "date" if all(_is_date(value) for value in values) else "categorical"
        else:
            types[column] = "unknown"
    return types


def suggest_visualizations(data: Sequence[Mapping[str, Any]]) -> tuple[dict[str, str], list[ChartSuggestion]]:
    """Column types of `data` and up to MAX_SUGGESTIONS charts that suit them."""
    types = infer_column_types(data)
    numeric = [column for column, kind in types.items() if kind == "numeric"]
    categorical = [column for column, kind in types.items() if kind == "categorical"]
    dates = [column for column, kind in types.items() if kind == "date"]

    suggestions: list[ChartSuggestion] = []
    if len(numeric) >= 2:
        suggestions.append(
            ChartSuggestion(
                type="correlation",
                title="Correlation Matrix",
                description="Visualize relationships between numeric variables",
                required_columns=list(numeric),
            )
        )
        for i in range(min(len(numeric) - 1, 3)):
            for j in range(i + 1, min(len(numeric), 4)):
                suggestions.append(
                    ChartSuggestion(
                        type="scatter",
                        title=f"Scatter: {numeric[i]} vs {numeric[j]}",
                        description="Explore relationship between two variables",
                        config={"x": numeric[i], "y": numeric[j]},
                    )
                )

    for column in numeric[:3]:
        suggestions.append(
            ChartSuggestion(
                type="histogram",
                title=f"Distribution of {column}",
                description="Visualize the distribution of values",
                config={"variable": column},
            )
        )

    if numeric and categorical:
        suggestions.append(
            ChartSuggestion(
                type="boxplot",
                title=f"{numeric[0]} by {categorical[0]}",
                description="Compare distributions across categories",
                config={"x": categorical[0], "y": numeric[0]},
            )
        )

    if numeric and dates:
        suggestions.append(
            ChartSuggestion(
                type="timeseries",
                title=f"Time Series: {numeric[0]} over time",
                description="Visualize trends over time",
                config={"x": dates[0], "y": numeric[0]},
            )
        )

    return types, suggestions[:MAX_SUGGESTIONS]


__all__ = [
    "AVAILABLE_PACKAGES",
    "MAX_SUGGESTIONS",
    "TEMPLATES",
    "VISUALIZATION_KINDS",
    "ChartSuggestion",
    "generate_r_code",
    "generate_visualization_code",
    "infer_column_types",
    "numeric_columns",
    "suggest_visualizations",
]
