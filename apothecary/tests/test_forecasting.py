from datetime import datetime, timedelta

import pytest

from apothecary.app.db.models.core_types import MovementSource, MovementType
from apothecary.services import forecasting, inventory
from apothecary.app.db.models.models_v1 import StockMovement

NOW = datetime(2026, 3, 1, 12, 0)


@pytest.fixture
def consumed(db_session, staff_ctx, make_product):
    """
    Produit avec un stock réel (journal) et 14 jours d'historique
    de sorties : 5 unités par jour, de J-14 à J-1.
    """

    def _make(stock, per_day=5, days=14, **kwargs):
        p = make_product(**kwargs)
        inventory.adjust_stock(db_session, staff_ctx, product_id=p.id, adjustment=stock)
        for k in range(1, days + 1):
            db_session.add(
                StockMovement(
                    product_id=p.id,
                    movement_type=MovementType.stock_out,
                    quantity=per_day,
                    previous_stock=0,
                    new_stock=0,
                    reason="history",
                    source=MovementSource.distribution,
                    created_by=staff_ctx.user_id,
                    created_at=NOW - timedelta(days=k) + timedelta(hours=1),
                )
            )
        db_session.commit()
        return p

    return _make


@pytest.mark.parametrize(
    "quantities, expected",
    [
        ([5, 5, 5, 5], "stable"),
        ([1, 2, 3, 4, 5, 6], "increasing"),
        ([6, 5, 4, 3, 2, 1], "decreasing"),
        ([0, 0, 3], "increasing"),
        ([7], "stable"),
    ],
)
def test_trend_of(quantities, expected):
    assert forecasting.trend_of(quantities) == expected


@pytest.mark.parametrize(
    "count, days, expected",
    [(0, 30, "none"), (2, 30, "very_low"), (5, 30, "low"), (10, 30, "medium"), (14, 14, "medium"), (14, 30, "high")],
)
def test_confidence_of(count, days, expected):
    assert forecasting.confidence_of(count, days) == expected


def test_consumption_analysis_windows(db_session, consumed):
    p = consumed(100)

    week = forecasting.consumption_analysis(db_session, p.id, 7, now=NOW)
    month = forecasting.consumption_analysis(db_session, p.id, 30, now=NOW)

    assert (week["movement_count"], week["total_consumption"], week["average"]) == (7, 35, 5.0)
    assert week["trend"] == "stable"
    assert week["confidence"] == "medium"
    assert (month["movement_count"], month["total_consumption"]) == (14, 70)
    assert month["confidence"] == "high"


def test_consumption_without_history(db_session, make_product):
    p = make_product()
    result = forecasting.consumption_analysis(db_session, p.id, 30, now=NOW)
    assert result["average"] == 0.0
    assert result["confidence"] == "none"


def test_forecast_is_deterministic_and_finds_stock_out(db_session, consumed):
    """
    GIVEN
    - stock 100, 5/jour sur 14 jours
    - taux pondéré = 5*.4 + 5*.3 + (70/30)*.2 + (70/60)*.1 ~= 4.08 / jour

    THEN
    - rupture au jour 25, urgence medium
    - deux appels donnent exactement la même projection
    """
    p = consumed(100, unit_price="2.50")

    first = forecasting.forecast_stock(db_session, p.id, 30, now=NOW)
    second = forecasting.forecast_stock(db_session, p.id, 30, now=NOW)

    assert first["forecast"] == second["forecast"]
    assert first["daily_consumption_rate"] == 4.08
    assert first["trend"] == "stable"
    assert first["days_until_stock_out"] == 25
    assert first["stock_out_date"] == (NOW + timedelta(days=25)).date()
    assert first["forecast"][0]["predicted_stock"] == 96

    suggestion = first["reorder_suggestion"]
    assert suggestion["urgency"] == "medium"
    assert suggestion["should_reorder"] is False
    assert suggestion["suggested_reorder_point"] == 41
    assert suggestion["lead_time_days"] == 7


def test_bulk_and_reorder_recommendations(db_session, consumed, make_product, staff_ctx):
    slow = make_product(name="Slow mover", reorder_level=0)
    inventory.adjust_stock(db_session, staff_ctx, product_id=slow.id, adjustment=50)
    healthy = consumed(100, name="Healthy")
    urgent = consumed(10, name="Urgent", reorder_level=20)

    bulk = forecasting.bulk_forecast(db_session, now=NOW)
    assert [f["product_id"] for f in bulk["forecasts"]] == [urgent.id, healthy.id, slow.id]
    assert bulk["critical_products"] == 1
    assert bulk["low_stock_products"] == 1

    recs = forecasting.reorder_recommendations(db_session, now=NOW)
    assert recs["total_recommendations"] == 1
    assert recs["recommendations"][0]["product_id"] == urgent.id
    assert recs["urgency_breakdown"] == {"high": 1, "medium": 0, "low": 0}

    assert forecasting.reorder_recommendations(db_session, urgency="low", now=NOW)["total_recommendations"] == 0


def test_analytics_counts(db_session, staff_ctx, make_product):
    a = make_product(reorder_level=5)
    make_product(reorder_level=0)
    inventory.adjust_stock(db_session, staff_ctx, product_id=a.id, adjustment=3)

    stats = forecasting.analytics(db_session)

    # 3 <= 5 et 0 <= 0 : les deux sont en stock bas
    assert stats["total_products"] == 2
    assert stats["low_stock_products"] == 2
    assert stats["low_stock_percentage"] == 100.0
    assert stats["movement_stats"] == {"in": {"count": 1, "total_quantity": 3}}
