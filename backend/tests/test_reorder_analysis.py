from decimal import Decimal
from types import SimpleNamespace

import pytest

from backend.app.db.models.core_types import DemandTrend, StockStatus, Urgency
from backend.services.inventory import (
    NO_STOCKOUT_SENTINEL,
    analyze_item,
    days_until_stockout,
    demand_trend,
    economic_order_quantity,
    get_item,
    inventory_value,
    is_reorder_recommended,
    list_items_needing_reorder,
    record_last_ordered,
    sales_velocity,
    stock_status_level,
    suggested_order_quantity,
    urgency_level,
)
from backend.app.core.errors import NotFoundError


def item(**fields):
    values = {
        "sku": "SKU-1",
        "current_stock": 0,
        "reorder_point": 0,
        "reorder_quantity": 0,
        "max_stock": None,
        "min_order_quantity": 1,
        "order_increment": 1,
        "lead_time_days": 7,
        "sales_last_30_days": 0,
        "sales_last_90_days": 0,
        "unit_cost": Decimal("0"),
    }
    values.update(fields)
    return SimpleNamespace(**values)


# ---------- vélocité / rupture ----------
def test_velocity_uses_30_day_rate():
    assert sales_velocity(item(sales_last_30_days=60, sales_last_90_days=90)) == 2.0


def test_velocity_falls_back_to_90_day_rate_when_30_day_is_zero():
    assert sales_velocity(item(sales_last_30_days=0, sales_last_90_days=45)) == 0.5


def test_velocity_zero_without_sales():
    assert sales_velocity(item(sales_last_30_days=None, sales_last_90_days=None)) == 0.0


def test_days_until_stockout_is_floored():
    # 10 / (30/30) = 10 ; 10 / (45/30) = 6.67 -> 6
    assert days_until_stockout(item(current_stock=10, sales_last_30_days=30)) == 10
    assert days_until_stockout(item(current_stock=10, sales_last_30_days=45)) == 6


def test_days_until_stockout_sentinel_without_velocity():
    assert days_until_stockout(item(current_stock=10)) == NO_STOCKOUT_SENTINEL


@pytest.mark.parametrize(
    "stock,expected",
    [(7, Urgency.critical), (14, Urgency.high), (30, Urgency.medium), (31, Urgency.low)],
)
def test_urgency_thresholds(stock, expected):
    # vélocité 1/jour -> jours = stock
    assert urgency_level(item(current_stock=stock, sales_last_30_days=30)) == expected


# ---------- statut ----------
def test_status_out_of_stock_is_critical():
    assert stock_status_level(item(current_stock=0, reorder_point=5)) == StockStatus.critical


def test_status_above_reorder_point_is_adequate():
    assert stock_status_level(item(current_stock=10, reorder_point=5)) == StockStatus.adequate


def test_status_at_reorder_point_without_sales_is_low():
    """
    GIVEN stock == point de commande, aucune vente (rupture non projetée)
    THEN low : critical est réservé au stock nul ou à une rupture <= 7 jours
    """
    assert stock_status_level(item(current_stock=5, reorder_point=5)) == StockStatus.low


def test_status_at_reorder_point_with_imminent_stockout_is_critical():
    # 5 unités, 1 vendue par jour -> 5 jours
    assert stock_status_level(item(current_stock=5, reorder_point=5, sales_last_30_days=30)) == StockStatus.critical


def test_status_overstocked_from_reorder_point_multiple():
    assert stock_status_level(item(current_stock=21, reorder_point=5)) == StockStatus.overstocked
    assert stock_status_level(item(current_stock=20, reorder_point=5)) == StockStatus.adequate


def test_status_overstocked_from_explicit_max_stock():
    assert stock_status_level(item(current_stock=11, reorder_point=5, max_stock=10)) == StockStatus.overstocked


def test_reorder_recommended_flag():
    assert is_reorder_recommended(item(current_stock=5, reorder_point=5)) is True
    assert is_reorder_recommended(item(current_stock=6, reorder_point=5)) is False


# ---------- quantités ----------
def test_suggested_quantity_takes_lead_time_need():
    # ceil(2/jour * 10 jours * 1.5) = 30 > reorder_quantity
    assert suggested_order_quantity(item(reorder_quantity=20, sales_last_30_days=60, lead_time_days=10)) == 30


@pytest.mark.parametrize(
    "fields",
    [
        {"reorder_quantity": 7, "order_increment": 5},
        {"reorder_quantity": 0, "min_order_quantity": 12, "order_increment": 5},
        {"reorder_quantity": 3, "sales_last_30_days": 47, "lead_time_days": 9, "order_increment": 6},
        {"reorder_quantity": 0, "min_order_quantity": 1, "order_increment": 1},
    ],
)
def test_suggested_quantity_respects_moq_and_increment(fields):
    it = item(**fields)
    quantity = suggested_order_quantity(it)
    assert quantity % it.order_increment == 0
    assert quantity >= it.min_order_quantity


def test_eoq():
    # demande annuelle = 1/jour * 365 ; sqrt(2 * 365 * 50 / 0.25) = 382.09
    assert economic_order_quantity(item(sales_last_30_days=30)) == 383
    assert economic_order_quantity(item()) == 0


def test_demand_trend():
    assert demand_trend(item(sales_last_30_days=60, sales_last_90_days=120)) == DemandTrend.increasing
    assert demand_trend(item(sales_last_30_days=10, sales_last_90_days=90)) == DemandTrend.decreasing
    assert demand_trend(item(sales_last_30_days=30, sales_last_90_days=90)) == DemandTrend.stable
    assert demand_trend(item()) == DemandTrend.stable


def test_analysis_is_idempotent():
    it = item(current_stock=4, reorder_point=10, sales_last_30_days=15, unit_cost=Decimal("2.50"))
    assert analyze_item(it) == analyze_item(it)
    assert inventory_value(it) == Decimal("10.00")


# ---------- lectures DB ----------
def test_needing_reorder_excludes_discontinued_and_sorts_by_stockout(db_session, make_item):
    make_item("A", current_stock=20, reorder_point=25, sales_last_30_days=30)  # 20 jours
    make_item("B", current_stock=3, reorder_point=25, sales_last_30_days=30)  # 3 jours
    make_item("C", current_stock=1, reorder_point=25, discontinued=True)
    make_item("D", current_stock=50, reorder_point=25)

    assert [i.sku for i in list_items_needing_reorder(db_session)] == ["B", "A"]


def test_get_item_not_found(db_session):
    with pytest.raises(NotFoundError):
        get_item(db_session, "NOPE")


def test_record_last_ordered(db_session, make_item):
    from datetime import date

    make_item("A", current_stock=1, reorder_point=5)
    record_last_ordered(db_session, [("A", 40)], date(2026, 3, 1))
    db_session.commit()

    it = get_item(db_session, "A")
    assert it.last_ordered_date == date(2026, 3, 1)
    assert it.last_ordered_quantity == 40
