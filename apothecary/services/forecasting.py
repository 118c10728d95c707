"""
Prévision de consommation à partir du journal des mouvements "out".

- consommation moyenne sur plusieurs fenêtres (7 / 14 / 30 / 60 jours)
- tendance : régression linéaire sur la série des sorties
- projection jour par jour du stock, date de rupture, suggestion de réappro

La projection est déterministe : mêmes mouvements => même prévision.
"""

from __future__ import annotations

from datetime import datetime, timedelta

import numpy as np
import pandas as pd
import structlog
from sklearn.linear_model import LinearRegression
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from apothecary.app.db.models.core_types import MovementType
from apothecary.app.db.models.models_v1 import Product, StockMovement
from apothecary.services.errors import NotFoundError, ValidationError

logger = structlog.get_logger(__name__)

ANALYSIS_WINDOWS = {7: 0.4, 14: 0.3, 30: 0.2, 60: 0.1}
TREND_MULTIPLIERS = {"increasing": 1.2, "decreasing": 0.8, "stable": 1.0}
CONFIDENCE_SCORES = {"none": 0, "very_low": 1, "low": 2, "medium": 3, "high": 4}

LEAD_TIME_DAYS = 7
SAFETY_STOCK_DAYS = 3
ORDER_COVERAGE_DAYS = 30
MAX_FORECAST_POINTS = 30


def _out_movements(db: Session, product_id: int, since: datetime) -> pd.DataFrame:
    rows = db.execute(
        select(StockMovement.created_at, StockMovement.quantity)
        .where(StockMovement.product_id == product_id)
        .where(StockMovement.movement_type == MovementType.stock_out)
        .where(StockMovement.created_at >= since)
        .order_by(StockMovement.created_at, StockMovement.id)
    ).all()
    return pd.DataFrame(rows, columns=["created_at", "quantity"])


def trend_of(quantities) -> str:
    """
    Pente de la droite ajustée sur les sorties successives :
    rapport fin/début > 1.2 => increasing, < 0.8 => decreasing.
    """
    y = np.asarray(quantities, dtype=float)
    n = len(y)
    if n < 2:
        return "stable"

    X = np.arange(n).reshape(-1, 1)
    model = LinearRegression()
    model.fit(X, y)
    start, end = model.predict(np.array([[0], [n - 1]]))

    if start <= 0:
        return "increasing" if end > start else "stable"
    ratio = end / start
    if ratio > 1.2:
        return "increasing"
    if ratio < 0.8:
        return "decreasing"
    return "stable"


def confidence_of(movement_count: int, days: int) -> str:
    if movement_count == 0:
        return "none"
    if movement_count < 3:
        return "very_low"
    if movement_count < 7:
        return "low"
    if movement_count < 14:
        return "medium"
    return "high" if days >= 30 else "medium"


def _overall_confidence(analyses: dict) -> str:
    scores = [CONFIDENCE_SCORES[a["confidence"]] for a in analyses.values()]
    avg = sum(scores) / len(scores) if scores else 0
    if avg >= 3.5:
        return "high"
    if avg >= 2.5:
        return "medium"
    if avg >= 1.5:
        return "low"
    if avg >= 0.5:
        return "very_low"
    return "none"


def _get_product(db: Session, product_id: int) -> Product:
    product = db.get(Product, product_id)
    if not product:
        raise NotFoundError("Product not found")
    return product


def consumption_analysis(db: Session, product_id: int, days: int = 30, now: datetime | None = None) -> dict:
    if days <= 0:
        raise ValidationError("days must be greater than 0", errors=[{"field": "days", "message": "must be > 0"}])
    _get_product(db, product_id)

    now = now or datetime.utcnow()
    df = _out_movements(db, product_id, now - timedelta(days=days))

    if df.empty:
        return {
            "product_id": product_id,
            "average": 0.0,
            "total_consumption": 0,
            "movement_count": 0,
            "trend": "stable",
            "confidence": "none",
            "period_days": days,
        }

    total = int(df["quantity"].sum())
    return {
        "product_id": product_id,
        "average": total / days,
        "total_consumption": total,
        "movement_count": int(len(df)),
        "trend": trend_of(df["quantity"].tolist()),
        "confidence": confidence_of(len(df), days),
        "period_days": days,
    }


def reorder_suggestion(product: Product, daily_rate: float, days_until_stock_out: int | None) -> dict:
    reorder_point = daily_rate * LEAD_TIME_DAYS + daily_rate * SAFETY_STOCK_DAYS
    order_quantity = daily_rate * ORDER_COVERAGE_DAYS

    if days_until_stock_out is not None and days_until_stock_out <= 14:
        urgency = "high"
    elif days_until_stock_out is not None and days_until_stock_out <= 30:
        urgency = "medium"
    else:
        urgency = "low"

    return {
        "should_reorder": product.stock_quantity <= reorder_point,
        "suggested_reorder_point": int(round(reorder_point)),
        "suggested_order_quantity": int(round(order_quantity)),
        "urgency": urgency,
        "estimated_cost": int(round(order_quantity * float(product.unit_price or 0))),
        "lead_time_days": LEAD_TIME_DAYS,
    }


def forecast_stock(db: Session, product_id: int, days: int = 30, now: datetime | None = None) -> dict:
    if days <= 0:
        raise ValidationError("days must be greater than 0", errors=[{"field": "days", "message": "must be > 0"}])
    product = _get_product(db, product_id)
    now = now or datetime.utcnow()

    analyses = {f"{w}days": consumption_analysis(db, product_id, w, now=now) for w in ANALYSIS_WINDOWS}

    # seules les fenêtres un minimum fiables comptent
    weighted = total_weight = 0.0
    for window, weight in ANALYSIS_WINDOWS.items():
        a = analyses[f"{window}days"]
        if a["confidence"] not in ("none", "very_low"):
            weighted += a["average"] * weight
            total_weight += weight
    daily_rate = weighted / total_weight if total_weight else 0.0

    trend = analyses["14days"]["trend"]
    daily_rate *= TREND_MULTIPLIERS[trend]

    forecast = []
    stock = float(product.stock_quantity)
    for day in range(1, days + 1):
        stock -= daily_rate
        forecast.append(
            {
                "day": day,
                "date": (now + timedelta(days=day)).date(),
                "predicted_stock": max(0, int(round(stock))),
                "expected_consumption": int(round(daily_rate)),
            }
        )
        if stock <= 0:
            break

    stock_out = next((f for f in forecast if f["predicted_stock"] <= 0), None)
    days_until_stock_out = stock_out["day"] if stock_out else None

    return {
        "product_id": product.id,
        "product_name": product.name,
        "current_stock": product.stock_quantity,
        "reorder_level": product.reorder_level,
        "daily_consumption_rate": round(daily_rate, 2),
        "forecast_period": days,
        "trend": trend,
        "confidence": _overall_confidence(analyses),
        "stock_out_date": stock_out["date"] if stock_out else None,
        "days_until_stock_out": days_until_stock_out,
        "forecast": forecast[:MAX_FORECAST_POINTS],
        "reorder_suggestion": reorder_suggestion(product, daily_rate, days_until_stock_out),
        "analyses": analyses,
    }


def bulk_forecast(
    db: Session,
    *,
    product_ids: list[int] | None = None,
    days: int = 30,
    low_stock_only: bool = False,
    limit: int = 50,
    now: datetime | None = None,
) -> dict:
    stmt = select(Product).order_by(Product.id).limit(limit)
    if product_ids:
        stmt = stmt.where(Product.id.in_(product_ids))
    if low_stock_only:
        stmt = stmt.where(Product.stock_quantity <= Product.reorder_level)

    forecasts = [forecast_stock(db, p.id, days, now=now) for p in db.execute(stmt).scalars().all()]

    # ruptures les plus proches d'abord, les "sans rupture" à la fin
    forecasts.sort(
        key=lambda f: (f["days_until_stock_out"] is None, f["days_until_stock_out"] or 0, f["product_id"])
    )

    return {
        "total_forecasts": len(forecasts),
        "critical_products": sum(
            1 for f in forecasts if f["days_until_stock_out"] is not None and f["days_until_stock_out"] <= 7
        ),
        "low_stock_products": sum(1 for f in forecasts if f["reorder_suggestion"]["should_reorder"]),
        "forecasts": forecasts,
    }


def reorder_recommendations(
    db: Session,
    *,
    urgency: str = "all",
    limit: int = 20,
    now: datetime | None = None,
) -> dict:
    bulk = bulk_forecast(db, low_stock_only=True, limit=limit, now=now)

    recs = [
        {
            "product_id": f["product_id"],
            "product_name": f["product_name"],
            "current_stock": f["current_stock"],
            "reorder_level": f["reorder_level"],
            "days_until_stock_out": f["days_until_stock_out"],
            "urgency": f["reorder_suggestion"]["urgency"],
            "suggested_order_quantity": f["reorder_suggestion"]["suggested_order_quantity"],
            "estimated_cost": f["reorder_suggestion"]["estimated_cost"],
            "confidence": f["confidence"],
        }
        for f in bulk["forecasts"]
        if f["reorder_suggestion"]["should_reorder"]
    ]
    if urgency != "all":
        recs = [r for r in recs if r["urgency"] == urgency]

    return {
        "total_recommendations": len(recs),
        "urgency_breakdown": {u: sum(1 for r in recs if r["urgency"] == u) for u in ("high", "medium", "low")},
        "total_estimated_cost": sum(r["estimated_cost"] for r in recs),
        "recommendations": recs,
    }


def analytics(db: Session, now: datetime | None = None) -> dict:
    now = now or datetime.utcnow()
    total = int(db.execute(select(func.count(Product.id))).scalar_one())
    low = int(
        db.execute(
            select(func.count(Product.id)).where(Product.stock_quantity <= Product.reorder_level)
        ).scalar_one()
    )

    rows = db.execute(
        select(
            StockMovement.movement_type,
            func.count(StockMovement.id),
            func.sum(StockMovement.quantity),
        )
        .where(StockMovement.created_at >= now - timedelta(days=30))
        .group_by(StockMovement.movement_type)
    ).all()

    return {
        "total_products": total,
        "low_stock_products": low,
        "low_stock_percentage": round(low / total * 100, 2) if total else 0.0,
        "movement_stats": {
            mtype.value: {"count": int(cnt), "total_quantity": int(qty or 0)} for mtype, cnt, qty in rows
        },
        "last_updated": now,
    }
