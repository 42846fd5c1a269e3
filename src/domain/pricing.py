"""
Pricing Engine  (Strategy Pattern)
==================================

The pooling core treats this module as a black box: it is invoked once per
ride, after pool membership is final, and its failure never rolls back a
pooling decision.

Formula
-------
Estimate = (Base_Fare + Distance x Rate_Per_KM) x Demand_Multiplier + Luggage_Fee
Price    = Estimate x (1 - Pooling_Discount)

* **Demand_Multiplier**: tiered on recent nearby requests
  (0-5: 1.0, 6-10: 1.2, 11-15: 1.5, 16-20: 1.8, 21+: max)
* **Luggage_Fee**: flat fee per bag beyond the first
* **Pooling_Discount**: 0 % alone, 15 % for 2 riders, 20 % for 3,
  ``shared_discount`` (25 %) for 4+

Complexity: O(1) per price calculation.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


# ── Strategy hierarchy ────────────────────────────────────────────────


class PricingStrategy(ABC):
    @abstractmethod
    def calculate(self, estimate: float) -> float: ...


class StandardPricing(PricingStrategy):
    def calculate(self, estimate: float) -> float:
        return round(estimate, 2)


class PoolDiscountPricing(PricingStrategy):
    """Discount that grows with the number of riders sharing the cab."""

    def __init__(self, pool_size: int, shared_discount: float = 0.25):
        if pool_size >= 4:
            self.discount = shared_discount
        else:
            self.discount = {2: 0.15, 3: 0.20}.get(pool_size, 0.0)

    def calculate(self, estimate: float) -> float:
        return round(estimate * (1 - self.discount), 2)


@dataclass(frozen=True)
class PriceBreakdown:
    distance_km: float
    base_price: float
    demand_multiplier: float
    luggage_fee: float
    estimated_price: float
    pool_size: int = 1
    discount_rate: float = 0.0
    final_price: float = 0.0
    currency: str = "INR"


# ── Engine facade ─────────────────────────────────────────────────────


class PricingEngine:
    """High-level API used by the ride service and the API layer."""

    DEMAND_TIERS = ((20, None), (15, 1.8), (10, 1.5), (5, 1.2))

    def __init__(
        self,
        base_fare: float = 50.0,
        rate_per_km: float = 12.0,
        luggage_fee: float = 10.0,
        max_demand_multiplier: float = 2.5,
        shared_discount: float = 0.25,
    ):
        self.base_fare = base_fare
        self.rate_per_km = rate_per_km
        self.luggage_fee = luggage_fee
        self.max_demand_multiplier = max_demand_multiplier
        self.shared_discount = shared_discount

    def demand_multiplier(self, recent_requests: int) -> float:
        for threshold, multiplier in self.DEMAND_TIERS:
            if recent_requests > threshold:
                return multiplier if multiplier is not None else self.max_demand_multiplier
        return 1.0

    def estimate(
        self,
        distance_km: float,
        luggage_count: int,
        demand_multiplier: float = 1.0,
        pool_size: int = 1,
    ) -> PriceBreakdown:
        base_price = self.base_fare + distance_km * self.rate_per_km
        fee = max(0, luggage_count - 1) * self.luggage_fee
        estimated = base_price * demand_multiplier + fee

        strategy = PoolDiscountPricing(pool_size, self.shared_discount)
        return PriceBreakdown(
            distance_km=round(distance_km, 2),
            base_price=round(base_price, 2),
            demand_multiplier=demand_multiplier,
            luggage_fee=fee,
            estimated_price=round(estimated, 2),
            pool_size=pool_size,
            discount_rate=strategy.discount,
            final_price=strategy.calculate(estimated),
        )

    def price(
        self,
        distance_km: float,
        pool_size: int,
        luggage_count: int,
        demand_multiplier: float = 1.0,
    ) -> float:
        """Per-rider price once the pool size at commit is known."""
        return self.estimate(
            distance_km, luggage_count, demand_multiplier, pool_size
        ).final_price

    def final_price(
        self,
        estimated_price: float,
        estimated_distance_km: float,
        actual_distance_km: float,
    ) -> float:
        """Settle a completed ride; deviations within 10 % are absorbed."""
        deviation = actual_distance_km - estimated_distance_km
        adjustment = 0.0
        if abs(deviation) > estimated_distance_km * 0.1:
            adjustment = deviation * self.rate_per_km
        return round(max(self.base_fare, estimated_price + adjustment), 2)
