from decimal import Decimal

import pytest

from conftest import make_db_conn
from kimaaki.logic.coupons import CouponError
from kimaaki.logic.orders import (
    OrderError, build_order_economics, calculate_subtotal, calculate_total, get_order_history,
    process_order_with_commission, resolve_delivery_fee, update_order_status, update_payment_status,
)


@pytest.fixture()
def company(supabase):
    return supabase.seed("companies", {
        "company_name": "Muamba da Tia", "plan": "basic", "status": "approved", "delivery_fee": 500,
    })


def _order_data(company, **overrides):
    data = {
        "restaurant_id": company["id"],
        "items": [{"name": "Muamba", "price": 2500, "quantity": 2}, {"name": "Sumo", "price": 500, "quantity": 1}],
        "delivery_type": "platform_delivery",
        "delivery_address": "Rua da Missão, Luanda",
        "payment_method": "cash",
    }
    data.update(overrides)
    return data


def test_subtotal_and_total():
    assert calculate_subtotal([{"price": "2500", "quantity": 2}, {"price": 500}]) == Decimal(5500)
    assert calculate_total(5500, 500, 550) == Decimal(5450)


@pytest.mark.parametrize("items", [[], None, [{"price": 100, "quantity": 0}], [{"price": -1}], [{"price": "x"}]])
def test_invalid_items(items):
    with pytest.raises(OrderError):
        calculate_subtotal(items)


def test_resolve_delivery_fee():
    assert resolve_delivery_fee({"delivery_fee": 800}, "platform_delivery") == Decimal(800)
    assert resolve_delivery_fee({}, "self_delivery") == Decimal(500)
    assert resolve_delivery_fee({"delivery_fee": 800}, "pickup") == Decimal(0)


def test_economics_with_percentage_coupon(supabase):
    coupon = {"code": "DEZ", "type": "percentage", "value": 10}
    economics = build_order_economics(supabase, 5500, 500, "platform_delivery", "basic", coupon)

    assert economics["discount_amount"] == Decimal(550)
    assert economics["total"] == Decimal(5450)
    assert economics["commission_amount"] == 825
    assert economics["commission_source"] == "plan_default"


def test_economics_free_shipping_zeroes_fee(supabase):
    coupon = {"code": "FRETE", "type": "free_shipping", "value": 0}
    economics = build_order_economics(supabase, 3000, 500, "platform_delivery", "premium", coupon)

    assert economics["delivery_fee"] == Decimal(0)
    assert economics["discount_amount"] == Decimal(0)
    assert economics["total"] == Decimal(3000)
    assert economics["total"] == economics["subtotal"] + economics["delivery_fee"] - economics["discount_amount"]


def test_process_order_without_coupon(supabase, company):
    order = process_order_with_commission(supabase, None, "user-1", _order_data(company))

    assert order["status"] == "pending"
    assert order["subtotal"] == 5500
    assert order["delivery_fee"] == 500
    assert order["total"] == 6000
    assert order["commission_amount"] == 825
    assert order["commission_rate"] == 15
    assert order["commission_source"] == "plan_default"

    history = get_order_history(supabase, order["id"])
    assert [h["status"] for h in history] == ["pending"]
    notification = supabase.rows("notifications")[0]
    assert notification["title"] == "Pedido Recebido!"
    assert "Muamba da Tia" in notification["message"]


def test_process_order_with_coupon_redeems_atomically(supabase, company):
    supabase.seed("coupons", {"code": "DEZ", "type": "percentage", "value": 10, "is_active": True,
                              "used_count": 0, "max_uses": 100})
    conn = make_db_conn(fetchone={"code": "DEZ", "used_count": 1})

    order = process_order_with_commission(supabase, conn, "user-1", _order_data(company, coupon_code="dez"))

    assert order["discount_amount"] == 550
    assert order["total"] == 5450
    assert order["coupon_code"] == "DEZ"
    conn.commit.assert_called_once()


def test_process_order_coupon_lost_race(supabase, company):
    supabase.seed("coupons", {"code": "DEZ", "type": "percentage", "value": 10, "is_active": True,
                              "used_count": 0, "max_uses": 1})
    conn = make_db_conn(fetchone=None)

    with pytest.raises(CouponError) as exc:
        process_order_with_commission(supabase, conn, "user-1", _order_data(company, coupon_code="DEZ"))
    assert exc.value.reason == "usage_exhausted"
    assert supabase.rows("orders") == []


def test_process_order_releases_coupon_when_insert_fails(supabase, company):
    supabase.seed("coupons", {"code": "DEZ", "type": "fixed", "value": 100, "is_active": True, "used_count": 0})
    conn = make_db_conn(fetchone=[{"code": "DEZ", "used_count": 1}, {"code": "DEZ", "used_count": 0}])
    supabase.failing_tables.add("orders")

    with pytest.raises(RuntimeError):
        process_order_with_commission(supabase, conn, "user-1", _order_data(company, coupon_code="DEZ"))

    assert "GREATEST(used_count - 1, 0)" in conn.test_cursor.execute.call_args[0][0]


def test_process_order_below_minimum_rejected(supabase, company):
    supabase.seed("coupons", {"code": "MIN", "type": "fixed", "value": 50, "is_active": True,
                              "used_count": 0, "min_order_value": 500})
    data = _order_data(company, coupon_code="MIN", items=[{"price": 300, "quantity": 1}])

    with pytest.raises(CouponError) as exc:
        process_order_with_commission(supabase, make_db_conn(), "user-1", data)
    assert exc.value.reason == "below_min_order_value"


def test_pickup_has_no_fee_and_no_address(supabase, company):
    data = _order_data(company, delivery_type="pickup", delivery_address=None)
    order = process_order_with_commission(supabase, None, "user-1", data)

    assert order["delivery_fee"] == 0
    assert order["commission_rate"] == 5


@pytest.mark.parametrize("overrides", [
    {"delivery_type": "drone"},
    {"payment_method": "cheque"},
    {"delivery_address": ""},
    {"restaurant_id": "nao-existe"},
])
def test_process_order_validation(supabase, company, overrides):
    with pytest.raises(OrderError):
        process_order_with_commission(supabase, None, "user-1", _order_data(company, **overrides))


def test_pending_company_cannot_receive_orders(supabase):
    pending = supabase.seed("companies", {"company_name": "Nova", "plan": "basic", "status": "pending"})
    with pytest.raises(OrderError):
        process_order_with_commission(supabase, None, "user-1", _order_data(pending))


def test_update_order_status_records_history_and_notifies(supabase, company):
    order = process_order_with_commission(supabase, None, "user-1", _order_data(company))

    updated = update_order_status(supabase, order, "on_way")
    assert updated["status"] == "on_way"
    assert [h["status"] for h in get_order_history(supabase, order["id"])] == ["pending", "on_way"]
    assert supabase.rows("notifications")[-1]["title"] == "Pedido a Caminho!"

    # sem máquina de estados: qualquer status conhecido é aceito
    assert update_order_status(supabase, updated, "preparing")["status"] == "preparing"
    with pytest.raises(OrderError):
        update_order_status(supabase, updated, "lost")


def test_commission_rate_unchanged_by_status_update(supabase, company):
    order = process_order_with_commission(supabase, None, "user-1", _order_data(company))
    supabase.seed("commission_configs", {"country": "Angola", "city": None, "plan_type": "basic",
                                         "delivery_type": "platform_delivery", "commission_percentage": 1,
                                         "is_active": True})
    updated = update_order_status(supabase, order, "delivered")
    assert updated["commission_rate"] == 15


def test_degraded_commission_source_is_stored(supabase, company):
    supabase.failing_tables.add("commission_configs")

    order = process_order_with_commission(supabase, None, "user-1", _order_data(company))

    assert order["commission_source"] == "degraded"
    assert supabase.rows("orders")[0]["commission_source"] == "degraded"
    assert supabase.rows("orders")[0]["commission_rate"] == 15


def test_payment_status_transitions(supabase, company):
    order = process_order_with_commission(supabase, None, "user-1", _order_data(company))

    paid = update_payment_status(supabase, order, "paid")
    assert paid["payment_status"] == "paid"
    assert supabase.rows("notifications")[-1]["title"] == "Pagamento Confirmado"

    with pytest.raises(OrderError):
        update_payment_status(supabase, paid, "failed")
    with pytest.raises(OrderError):
        update_payment_status(supabase, paid, "estornado")

    assert update_payment_status(supabase, paid, "refunded")["payment_status"] == "refunded"
    with pytest.raises(OrderError):
        update_payment_status(supabase, {**paid, "payment_status": "refunded"}, "paid")


def test_payment_status_stale_read_is_not_applied(supabase, company):
    order = process_order_with_commission(supabase, None, "user-1", _order_data(company))
    update_payment_status(supabase, order, "failed")

    # `order` ainda diz pending; a escrita condicional não encontra a linha
    assert update_payment_status(supabase, order, "paid") is None
    assert supabase.rows("orders")[0]["payment_status"] == "failed"
