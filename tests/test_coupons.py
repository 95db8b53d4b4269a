from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from conftest import make_db_conn
from kimaaki.logic.coupons import (
    CouponError, apply_coupon, calculate_discount, find_coupon, list_available_coupons,
    redeem_coupon, release_coupon, validate_coupon, validate_coupon_payload,
)

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def _coupon(**overrides):
    coupon = {
        "code": "KIMAAKI10", "type": "percentage", "value": 10, "min_order_value": None,
        "max_uses": None, "used_count": 0, "expires_at": None, "is_active": True,
    }
    coupon.update(overrides)
    return coupon


class TestCalculateDiscount:
    def test_percentage(self):
        discount, free_shipping = calculate_discount(_coupon(), 5500)
        assert discount == Decimal(550)
        assert free_shipping is False

    def test_fixed_capped_at_subtotal(self):
        discount, _ = calculate_discount(_coupon(type="fixed", value=1000), 800)
        assert discount == Decimal(800)

    def test_percentage_never_exceeds_subtotal(self):
        discount, _ = calculate_discount(_coupon(value=150), 200)
        assert discount == Decimal(200)

    def test_negative_value_gives_no_discount(self):
        discount, _ = calculate_discount(_coupon(type="fixed", value=-50), 800)
        assert discount == Decimal(0)

    def test_free_shipping(self):
        discount, free_shipping = calculate_discount(_coupon(type="free_shipping", value=0), 3000)
        assert discount == Decimal(0)
        assert free_shipping is True

    def test_no_coupon(self):
        assert calculate_discount(None, 1000) == (Decimal(0), False)


class TestValidateCoupon:
    def test_valid_coupon_passes(self):
        coupon = _coupon(min_order_value=500, max_uses=10, used_count=3,
                         expires_at=(NOW + timedelta(days=1)).isoformat())
        assert validate_coupon(coupon, 1000, NOW) is coupon

    def test_below_min_order_value(self):
        with pytest.raises(CouponError) as exc:
            validate_coupon(_coupon(min_order_value=500), 300, NOW)
        assert exc.value.reason == "below_min_order_value"
        assert "500" in str(exc.value)

    @pytest.mark.parametrize("overrides, reason", [
        ({"is_active": False}, "inactive"),
        ({"max_uses": 5, "used_count": 5}, "usage_exhausted"),
        ({"expires_at": "2025-02-28T00:00:00Z"}, "expired"),
        ({"expires_at": NOW.isoformat()}, "expired"),
    ])
    def test_rejection_reasons(self, overrides, reason):
        with pytest.raises(CouponError) as exc:
            validate_coupon(_coupon(**overrides), 1000, NOW)
        assert exc.value.reason == reason

    def test_missing_coupon(self):
        with pytest.raises(CouponError) as exc:
            validate_coupon(None, 1000, NOW)
        assert exc.value.reason == "not_found"

    def test_zero_max_uses_means_unlimited(self):
        assert validate_coupon(_coupon(max_uses=0, used_count=99), 1000, NOW)

    def test_naive_expiry_treated_as_utc(self):
        with pytest.raises(CouponError):
            validate_coupon(_coupon(expires_at="2025-03-01T11:59:00"), 1000, NOW)


def test_find_coupon_is_case_insensitive(supabase):
    supabase.seed("coupons", _coupon())
    assert find_coupon(supabase, "  kimaaki10 ")["code"] == "KIMAAKI10"
    assert find_coupon(supabase, "") is None


def test_apply_coupon(supabase):
    supabase.seed("coupons", _coupon())
    result = apply_coupon(supabase, "kimaaki10", 5500, NOW)
    assert result["discount"] == Decimal(550)
    assert result["free_shipping"] is False


def test_list_available_skips_inactive_and_expired(supabase):
    supabase.seed(
        "coupons",
        _coupon(code="OK", created_at="2025-01-01"),
        _coupon(code="OFF", is_active=False, created_at="2025-01-02"),
        _coupon(code="OLD", expires_at="2025-01-01T00:00:00Z", created_at="2025-01-03"),
    )
    codes = [c["code"] for c in list_available_coupons(supabase, NOW)]
    assert codes == ["OK"]


class TestRedemption:
    def test_redeem_returns_updated_row(self):
        conn = make_db_conn(fetchone={"code": "KIMAAKI10", "used_count": 4})
        row = redeem_coupon(conn, "kimaaki10")

        assert row["used_count"] == 4
        sql, params = conn.test_cursor.execute.call_args[0]
        assert "used_count = used_count + 1" in sql
        assert "used_count < max_uses" in sql
        assert params == ("KIMAAKI10",)
        conn.commit.assert_called_once()

    def test_redeem_exhausted_returns_none(self):
        conn = make_db_conn(fetchone=None)
        assert redeem_coupon(conn, "KIMAAKI10") is None

    def test_release_floors_at_zero(self):
        conn = make_db_conn(fetchone={"code": "KIMAAKI10", "used_count": 0})
        release_coupon(conn, "KIMAAKI10")
        sql, _ = conn.test_cursor.execute.call_args[0]
        assert "GREATEST(used_count - 1, 0)" in sql


class TestCouponPayload:
    def test_create_normalizes_code(self):
        payload = validate_coupon_payload({"code": " verao ", "type": "fixed", "value": "200"})
        assert payload["code"] == "VERAO"
        assert payload["value"] == 200.0
        assert payload["used_count"] == 0
        assert payload["is_active"] is True

    @pytest.mark.parametrize("data", [
        {"type": "fixed"},
        {"code": "X", "type": "bogus"},
        {"code": "X", "type": "percentage", "value": 120},
        {"code": "X", "type": "fixed", "value": -1},
        {"code": "X", "type": "fixed", "max_uses": "muitos"},
    ])
    def test_invalid_payloads(self, data):
        with pytest.raises(ValueError):
            validate_coupon_payload(data)
