from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, model_validator

from engine.types import Mode, TimeFilter, ViewState, Viewport
from events.types import ALL_CATEGORIES, Category


class ApiTranslate(BaseModel):
    x: float = Field(default=0.0, allow_inf_nan=False)
    y: float = Field(default=0.0, allow_inf_nan=False)


class ApiTimeFilter(BaseModel):
    kind: Literal["month", "weekday"]
    value: int = Field(ge=0, le=11)

    @model_validator(mode="after")
    def _check_weekday(self) -> "ApiTimeFilter":
        if self.kind == "weekday" and self.value > 6:
            raise ValueError("weekday must be within 0..6 (Monday first)")
        return self


class ApiViewport(BaseModel):
    width: float = Field(gt=0.0, allow_inf_nan=False)
    height: float = Field(gt=0.0, allow_inf_nan=False)


class ApiView(BaseModel):
    """
    View state as sent by the map frontend.
    """

    scale: float = Field(default=1.0, gt=0.0, allow_inf_nan=False)
    translate: ApiTranslate = Field(default_factory=ApiTranslate)
    mode: Mode = Mode.CLUSTERED
    # None means every category; an empty list filters everything out.
    activeCategories: list[Category] | None = None
    timeFilter: ApiTimeFilter | None = None
    viewport: ApiViewport | None = None

    def to_view_state(self) -> ViewState:
        cats = ALL_CATEGORIES if self.activeCategories is None else self.activeCategories
        return ViewState(
            scale=self.scale,
            translate=(self.translate.x, self.translate.y),
            mode=self.mode,
            active_categories=frozenset(cats),
            time_filter=(
                TimeFilter(kind=self.timeFilter.kind, value=self.timeFilter.value)
                if self.timeFilter is not None
                else None
            ),
            viewport=(
                Viewport(width=self.viewport.width, height=self.viewport.height)
                if self.viewport is not None
                else None
            ),
        )


class ApiRecomputeRequest(BaseModel):
    view: ApiView = Field(default_factory=ApiView)
