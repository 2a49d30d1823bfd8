"""
Directions client for PeerCarrier

Route distance / ETA and address geocoding through the Google Maps web
services. Used for advisory quotes only: nothing in the matching workflow
depends on it, so every failure degrades to None.
"""

import math
import logging
import requests
from dataclasses import dataclass
from typing import Optional, Tuple
from django.conf import settings

from core.models import CarrierType

logger = logging.getLogger(__name__)


Coordinates = Tuple[float, float]  # (latitude, longitude)

# Google travel mode per carrier type
TRAVEL_MODES = {
    CarrierType.CARRIER: 'walking',
    CarrierType.BICYCLE: 'bicycling',
    CarrierType.BIKE: 'driving',
    CarrierType.CAR: 'driving',
}

# Average speeds (km/h) for the straight-line fallback
FALLBACK_SPEEDS_KMH = {
    'walking': 5.0,
    'bicycling': 15.0,
    'driving': 30.0,
}


@dataclass
class Route:
    distance_km: float
    eta_minutes: int
    polyline: str = ''
    estimated: bool = False

    def to_dict(self):
        return {
            'distance_km': round(self.distance_km, 2),
            'eta_minutes': self.eta_minutes,
            'polyline': self.polyline,
            'estimated': self.estimated,
        }


def haversine_km(origin: Coordinates, destination: Coordinates) -> float:
    """Straight-line distance in kilometers."""
    R = 6371  # Earth radius in km

    lat1, lon1 = math.radians(origin[0]), math.radians(origin[1])
    lat2, lon2 = math.radians(destination[0]), math.radians(destination[1])

    dlat = lat2 - lat1
    dlon = lon2 - lon1

    a = math.sin(dlat/2)**2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon/2)**2
    c = 2 * math.asin(math.sqrt(a))

    return R * c


def travel_mode_for(carrier_type: str) -> str:
    return TRAVEL_MODES.get(carrier_type, 'driving')


class DirectionsClient:
    """Thin wrapper around the Directions and Geocoding JSON APIs."""

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None, timeout: Optional[int] = None):
        self.api_key = api_key if api_key is not None else settings.GOOGLE_MAPS_API_KEY
        self.base_url = (base_url or settings.GOOGLE_MAPS_BASE_URL).rstrip('/')
        self.timeout = timeout if timeout is not None else settings.DIRECTIONS_TIMEOUT

    def route(self, origin: Coordinates, destination: Coordinates, mode: str = 'driving') -> Optional[Route]:
        """
        Get the first route between two points.

        Returns:
            Route or None if the API key is missing, the call fails or no
            route exists
        """
        if not self.api_key:
            logger.debug("[DIRECTIONS] No API key configured")
            return None

        params = {
            'origin': f"{origin[0]},{origin[1]}",
            'destination': f"{destination[0]},{destination[1]}",
            'mode': mode,
            'key': self.api_key,
        }
        try:
            response = requests.get(f"{self.base_url}/directions/json", params=params, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.error(f"[DIRECTIONS] Directions request failed: {e}")
            return None

        routes = data.get('routes') or []
        if data.get('status') != 'OK' or not routes or not routes[0].get('legs'):
            logger.warning(f"[DIRECTIONS] No route ({data.get('status')}) for mode={mode}")
            return None

        leg = routes[0]['legs'][0]
        return Route(
            distance_km=leg['distance']['value'] / 1000,
            eta_minutes=round(leg['duration']['value'] / 60),
            polyline=routes[0].get('overview_polyline', {}).get('points', ''),
        )

    def geocode(self, address: str) -> Optional[Coordinates]:
        """Resolve a free-text address to (latitude, longitude)."""
        if not self.api_key or not address or not address.strip():
            return None
        try:
            response = requests.get(
                f"{self.base_url}/geocode/json",
                params={'address': address.strip(), 'key': self.api_key},
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.error(f"[DIRECTIONS] Geocoding request failed: {e}")
            return None

        results = data.get('results') or []
        if data.get('status') != 'OK' or not results:
            logger.info(f"[DIRECTIONS] Address not found: {address!r} ({data.get('status')})")
            return None

        location = results[0]['geometry']['location']
        return (location['lat'], location['lng'])

    def route_or_estimate(self, origin: Coordinates, destination: Coordinates, mode: str = 'driving') -> Route:
        """Route from the API, or a straight-line estimate when unavailable."""
        route = self.route(origin, destination, mode)
        if route is not None:
            return route

        distance_km = haversine_km(origin, destination)
        speed = FALLBACK_SPEEDS_KMH.get(mode, FALLBACK_SPEEDS_KMH['driving'])
        return Route(
            distance_km=distance_km,
            eta_minutes=max(1, round(distance_km / speed * 60)),
            estimated=True,
        )
