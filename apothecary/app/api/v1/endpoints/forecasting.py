from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from apothecary.app.api.deps import get_db, require_staff
from apothecary.app.core.security import RequestContext
from apothecary.services import forecasting

router = APIRouter(prefix="/forecasting")


class BulkForecastIn(BaseModel):
    product_ids: list[int] | None = None
    forecast_days: int = Field(default=30, ge=1, le=365)
    include_only_low_stock: bool = False
    limit: int = Field(default=50, ge=1, le=500)


@router.get("/products/{product_id}")
def product_forecast(
    product_id: int,
    days: int = Query(default=30, ge=1, le=365),
    _: RequestContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return forecasting.forecast_stock(db, product_id, days)


@router.get("/products/{product_id}/consumption")
def product_consumption(
    product_id: int,
    days: int = Query(default=30, ge=1, le=365),
    _: RequestContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return forecasting.consumption_analysis(db, product_id, days)


@router.post("/bulk")
def bulk(payload: BulkForecastIn, _: RequestContext = Depends(require_staff), db: Session = Depends(get_db)):
    return forecasting.bulk_forecast(
        db,
        product_ids=payload.product_ids,
        days=payload.forecast_days,
        low_stock_only=payload.include_only_low_stock,
        limit=payload.limit,
    )


@router.get("/reorder-recommendations")
def reorder_recommendations(
    urgency: Literal["all", "high", "medium", "low"] = "all",
    limit: int = Query(default=20, ge=1, le=500),
    _: RequestContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return forecasting.reorder_recommendations(db, urgency=urgency, limit=limit)


@router.get("/analytics")
def analytics(_: RequestContext = Depends(require_staff), db: Session = Depends(get_db)):
    return forecasting.analytics(db)
