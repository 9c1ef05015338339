"""
Visualization API schemas.

Chart configs turned into R code, and chart suggestions for a dataset.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

ChartType = Literal["scatter", "line", "bar", "histogram", "boxplot", "3d"]


class VisualizationConfig(BaseModel):
    """Which columns go where; unused fields are ignored by the chosen library."""

    chart_type: ChartType = Field(default="scatter", description="Kind of chart to draw")
    x: str | None = Field(default=None, max_length=128)
    y: str | None = Field(default=None, max_length=128)
    z: str | None = Field(default=None, max_length=128, description="Third axis for plotly 3d charts")
    color: str | None = Field(default=None, max_length=128, description="ggplot2 colour grouping")
    facet: str | None = Field(default=None, max_length=128, description="ggplot2 facet column")
    title: str | None = Field(default=None, max_length=200)


class CreateVisualizationRequest(BaseModel):
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "type": "ggplot",
                "data": [{"height": 170, "weight": 65}, {"height": 182, "weight": 80}],
                "config": {"chart_type": "scatter", "x": "height", "y": "weight", "title": "Height vs weight"},
            }
        }
    )

    type: Literal["ggplot", "plotly", "base"] = Field(..., description="Plotting library")
    data: list[dict[str, Any]] = Field(..., description="Rows the chart will be drawn from")
    config: VisualizationConfig


class CreateVisualizationResponse(BaseModel):
    success: bool = Field(default=True)
    type: str
    code: str = Field(..., description="R code that draws the chart from `data`")


class SuggestVisualizationsRequest(BaseModel):
    data: list[dict[str, Any]] = Field(..., min_length=1, description="Rows to analyse")


class ChartSuggestionModel(BaseModel):
    type: str
    title: str
    description: str
    config: dict[str, str] = Field(default_factory=dict)
    required_columns: list[str] = Field(default_factory=list)


class SuggestVisualizationsResponse(BaseModel):
    data_types: dict[str, str] = Field(..., description="numeric, date, categorical or unknown per column")
    suggestions: list[ChartSuggestionModel]
