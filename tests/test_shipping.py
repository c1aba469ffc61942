"""Tests for ShippingRateResolver."""

from decimal import Decimal

import pytest

from cartflow.errors import NotFoundError, ValidationError
from cartflow.shipping import ShippingRateResolver


@pytest.fixture
def shipping(temp_dir):
    return ShippingRateResolver(temp_dir)


class TestResolve:
    """Tests for rate lookup."""

    def test_unknown_code_ships_free(self, shipping):
        assert shipping.resolve("999999") == Decimal("0")

    @pytest.mark.parametrize("code", [None, "", "not-a-code", "12"])
    def test_resolve_never_raises(self, shipping, code):
        assert shipping.resolve(code) == Decimal("0")

    def test_configured_code(self, shipping):
        shipping.set_rate("560001", "50.00")

        assert shipping.resolve("560001") == Decimal("50.00")
        assert shipping.resolve(" 560001 ") == Decimal("50.00")

    def test_inactive_rate_ships_free(self, shipping):
        shipping.set_rate("560001", "50.00", active=False)

        assert shipping.resolve("560001") == Decimal("0")

    def test_updates_seen_by_other_instances(self, shipping, temp_dir):
        other = ShippingRateResolver(temp_dir)
        assert other.resolve("560001") == Decimal("0")

        shipping.set_rate("560001", "50.00")
        assert other.resolve("560001") == Decimal("50.00")

        shipping.set_rate("560001", "65.00")
        assert other.resolve("560001") == Decimal("65.00")


class TestRateAdministration:
    """Tests for managing the rate table."""

    def test_set_rate_rejects_bad_code(self, shipping):
        with pytest.raises(ValidationError):
            shipping.set_rate("ABC", "10")

    def test_set_rate_rejects_negative_charge(self, shipping):
        with pytest.raises(ValidationError):
            shipping.set_rate("560001", "-1")

    @pytest.mark.parametrize("charge", ["NaN", "Infinity", float("nan")])
    def test_set_rate_rejects_non_finite_charge(self, shipping, charge):
        with pytest.raises(ValidationError):
            shipping.set_rate("560001", charge)

        assert shipping.resolve("560001") == Decimal("0")

    def test_custom_pattern(self, temp_dir):
        shipping = ShippingRateResolver(temp_dir, postal_code_pattern=r"^\d{5}$")
        rate = shipping.set_rate("94107", "12.50")

        assert rate.postal_code == "94107"
        with pytest.raises(ValidationError):
            shipping.set_rate("560001", "5")

    def test_set_rate_updates_existing(self, shipping):
        shipping.set_rate("560001", "50.00", description="central")
        rate = shipping.set_rate("560001", "40.00")

        assert rate.charge == Decimal("40.00")
        assert len(shipping.list_rates()) == 1

    def test_list_rates_inactive_filter(self, shipping):
        shipping.set_rate("560001", "50.00")
        shipping.set_rate("560002", "60.00", active=False)

        assert [r.postal_code for r in shipping.list_rates()] == ["560001", "560002"]
        assert [r.postal_code for r in shipping.list_rates(include_inactive=False)] == ["560001"]

    def test_remove_rate(self, shipping):
        shipping.set_rate("560001", "50.00")
        removed = shipping.remove_rate("560001")

        assert removed.postal_code == "560001"
        assert shipping.resolve("560001") == Decimal("0")
        with pytest.raises(NotFoundError):
            shipping.remove_rate("560001")

    def test_get_rate_missing_raises(self, shipping):
        with pytest.raises(NotFoundError):
            shipping.get_rate("560001")


class TestServiceability:
    """Tests for postal-code checks and pending requests."""

    def test_serviceable_code(self, shipping):
        shipping.set_rate("560001", "50.00")
        result = shipping.check("560001")

        assert result.serviceable
        assert result.charge == Decimal("50.00")
        assert shipping.pending_requests() == []

    def test_unserviceable_code_records_one_request(self, shipping):
        first = shipping.check("110001", requested_by="u1")
        shipping.check("110001", email="shopper@example.com")

        assert not first.serviceable
        assert first.charge == Decimal("0")
        pending = shipping.pending_requests()
        assert len(pending) == 1
        assert pending[0].requested_by == "u1"
        assert pending[0].email == "shopper@example.com"

    def test_setting_rate_resolves_requests(self, shipping):
        shipping.check("110001")
        shipping.set_rate("110001", "80.00")

        assert shipping.pending_requests() == []
        assert shipping.check("110001").serviceable

    def test_check_rejects_malformed_code(self, shipping):
        with pytest.raises(ValidationError):
            shipping.check("abc")
