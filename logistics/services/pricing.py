"""
Pricing Engine for PeerCarrier

Advisory delivery quotes by carrier type.

Formula: Price = Round(BaseFare[type] + EtaMinutes * CostPerMinute + Distance * CostPerKm)

The requester confirms the quote and the confirmed amount is stored on the
request as-is; the engine never overrides it.
"""

import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Optional
from django.conf import settings

from core.models import CarrierType
from logistics.services.directions import Coordinates, DirectionsClient, travel_mode_for

logger = logging.getLogger(__name__)


class PricingEngine:
    """
    Price calculation engine based on route distance and ETA.
    """

    def __init__(self, directions: Optional[DirectionsClient] = None):
        self.base_fares = {k: Decimal(str(v)) for k, v in settings.PRICING_BASE_FARES.items()}
        self.cost_per_minute = Decimal(str(settings.PRICING_COST_PER_MINUTE))
        self.cost_per_km = Decimal(str(settings.PRICING_COST_PER_KM))
        self.directions = directions or DirectionsClient()

    def quote(self, carrier_type: str, distance_km: float, eta_minutes: int) -> Decimal:
        """
        Price for one carrier type.

        Example: BIKE, 4 km, 12 min -> 3500 + 600 + 400 = 4500

        Raises:
            ValueError: unknown carrier type or negative distance/ETA
        """
        normalized = CarrierType.normalize(carrier_type)
        if normalized is None:
            raise ValueError(f"Unknown carrier type: {carrier_type}")
        if distance_km is None or eta_minutes is None or distance_km < 0 or eta_minutes < 0:
            raise ValueError("Distance and ETA must be non-negative")

        total = (
            self.base_fares[normalized]
            + self.cost_per_minute * int(eta_minutes)
            + self.cost_per_km * Decimal(str(distance_km))
        )
        return total.quantize(Decimal('1'), rounding=ROUND_HALF_UP)

    def quote_route(self, carrier_type: str, origin: Coordinates, destination: Coordinates) -> Dict:
        """
        Quote a trip, routing it with the carrier type's travel mode.

        Returns:
            dict with carrier_type, price, distance_km, eta_minutes, estimated
        """
        normalized = CarrierType.normalize(carrier_type)
        if normalized is None:
            raise ValueError(f"Unknown carrier type: {carrier_type}")

        route = self.directions.route_or_estimate(origin, destination, travel_mode_for(normalized))
        price = self.quote(normalized, route.distance_km, route.eta_minutes)

        logger.debug(
            f"[PRICING] {normalized}: {route.distance_km:.2f}km, {route.eta_minutes}min -> {price}"
        )
        return {
            'carrier_type': normalized,
            'price': price,
            'distance_km': round(route.distance_km, 2),
            'eta_minutes': route.eta_minutes,
            'estimated': route.estimated,
        }

    def quote_all(self, origin: Coordinates, destination: Coordinates) -> list:
        """One quote per carrier type, in selection order."""
        return [self.quote_route(carrier_type, origin, destination) for carrier_type in CarrierType.values]
