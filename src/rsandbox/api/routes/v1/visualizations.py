"""
Visualization endpoints (v1).

Both endpoints are pure code generation: nothing here touches a session.
Clients run the returned code through /r/execute with the same dataset.
"""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter

from rsandbox.core.codegen import generate_visualization_code, suggest_visualizations
from rsandbox.models.schemas.visualization import (
    ChartSuggestionModel,
    CreateVisualizationRequest,
    CreateVisualizationResponse,
    SuggestVisualizationsRequest,
    SuggestVisualizationsResponse,
)

router = APIRouter()


@router.post(
    "/create",
    response_model=CreateVisualizationResponse,
    summary="Generate chart code",
    description="Turn a chart config into ggplot2, plotly or base R code.",
    responses={422: {"description": "Invalid config or unknown column"}},
)
async def create_visualization(body: CreateVisualizationRequest) -> CreateVisualizationResponse:
    code = generate_visualization_code(body.type, body.config.model_dump(exclude_none=True), body.data)
    return CreateVisualizationResponse(type=body.type, code=code)


@router.post(
    "/suggest",
    response_model=SuggestVisualizationsResponse,
    summary="Suggest charts",
    description="Infer column types and suggest charts that suit them.",
)
async def suggest(body: SuggestVisualizationsRequest) -> SuggestVisualizationsResponse:
    data_types, suggestions = suggest_visualizations(body.data)
    return SuggestVisualizationsResponse(
        data_types=data_types,
        suggestions=[ChartSuggestionModel(**asdict(suggestion)) for suggestion in suggestions],
    )
