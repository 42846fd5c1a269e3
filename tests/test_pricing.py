"""Unit tests for the pricing engine."""

import pytest

from src.domain.pricing import PoolDiscountPricing, PricingEngine, StandardPricing


class TestPricingStrategies:
    def test_standard_pricing(self):
        assert StandardPricing().calculate(200.0) == 200.0

    def test_solo_rider_pays_full(self):
        assert PoolDiscountPricing(pool_size=1).calculate(200.0) == 200.0

    def test_pair_discount(self):
        assert PoolDiscountPricing(pool_size=2).calculate(200.0) == 170.0  # 15% off

    def test_trio_discount(self):
        assert PoolDiscountPricing(pool_size=3).calculate(200.0) == 160.0  # 20% off

    def test_full_cab_uses_shared_discount(self):
        assert PoolDiscountPricing(pool_size=4, shared_discount=0.25).calculate(200.0) == 150.0

    def test_discount_caps_at_shared_rate(self):
        four = PoolDiscountPricing(pool_size=4)
        six = PoolDiscountPricing(pool_size=6)
        assert four.calculate(200.0) == six.calculate(200.0)


class TestPricingEngine:
    def setup_method(self):
        self.engine = PricingEngine(base_fare=50.0, rate_per_km=12.0, luggage_fee=10.0)

    @pytest.mark.parametrize(
        "recent, expected",
        [(0, 1.0), (5, 1.0), (6, 1.2), (10, 1.2), (11, 1.5), (16, 1.8), (21, 2.5)],
    )
    def test_demand_tiers(self, recent, expected):
        assert self.engine.demand_multiplier(recent) == expected

    def test_max_multiplier_is_configurable(self):
        engine = PricingEngine(max_demand_multiplier=3.0)
        assert engine.demand_multiplier(100) == 3.0

    def test_estimate_breakdown(self):
        quote = self.engine.estimate(10.0, luggage_count=2)
        assert quote.base_price == 170.0  # 50 + 10 * 12
        assert quote.luggage_fee == 10.0  # one bag beyond the first
        assert quote.estimated_price == 180.0
        assert quote.final_price == 180.0
        assert quote.currency == "INR"

    def test_first_bag_is_free(self):
        assert self.engine.estimate(10.0, 0).luggage_fee == 0.0
        assert self.engine.estimate(10.0, 1).luggage_fee == 0.0

    def test_demand_scales_fare_not_luggage(self):
        quote = self.engine.estimate(10.0, luggage_count=3, demand_multiplier=1.5)
        assert quote.estimated_price == 170.0 * 1.5 + 20.0

    def test_shared_ride_cheaper(self):
        solo = self.engine.price(10.0, pool_size=1, luggage_count=1)
        pair = self.engine.price(10.0, pool_size=2, luggage_count=1)
        assert solo == 170.0
        assert pair == 144.5
        assert pair < solo


class TestFinalPrice:
    def setup_method(self):
        self.engine = PricingEngine(base_fare=50.0, rate_per_km=12.0)

    def test_small_deviation_absorbed(self):
        assert self.engine.final_price(180.0, 10.0, 10.5) == 180.0

    def test_longer_trip_charged(self):
        assert self.engine.final_price(180.0, 10.0, 15.0) == 240.0

    def test_shorter_trip_refunded(self):
        assert self.engine.final_price(180.0, 10.0, 0.0) == 60.0

    def test_never_below_base_fare(self):
        assert self.engine.final_price(100.0, 10.0, 0.0) == 50.0
