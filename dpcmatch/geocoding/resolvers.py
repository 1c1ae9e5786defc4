"""
External coordinate resolvers.

Zippopotam.us turns a 5-digit ZIP into a centroid; Nominatim turns a point
back into a place. Both return None on not-found or on any transport or
payload error, logging the reason.
"""

import logging
from typing import Any, Dict, Optional, Protocol

import requests

from ..models import GeoCoordinates, ReverseGeoResult

logger = logging.getLogger(__name__)

DEFAULT_ZIPPOPOTAM_URL = "https://api.zippopotam.us/us"
DEFAULT_NOMINATIM_URL = "https://nominatim.openstreetmap.org/reverse"
DEFAULT_USER_AGENT = "DPCMatch/1.0 (provider reconciliation)"

STATE_ABBREVIATIONS: Dict[str, str] = {
    "Alabama": "AL", "Alaska": "AK", "Arizona": "AZ", "Arkansas": "AR",
    "California": "CA", "Colorado": "CO", "Connecticut": "CT", "Delaware": "DE",
    "Florida": "FL", "Georgia": "GA", "Hawaii": "HI", "Idaho": "ID",
    "Illinois": "IL", "Indiana": "IN", "Iowa": "IA", "Kansas": "KS",
    "Kentucky": "KY", "Louisiana": "LA", "Maine": "ME", "Maryland": "MD",
    "Massachusetts": "MA", "Michigan": "MI", "Minnesota": "MN", "Mississippi": "MS",
    "Missouri": "MO", "Montana": "MT", "Nebraska": "NE", "Nevada": "NV",
    "New Hampshire": "NH", "New Jersey": "NJ", "New Mexico": "NM", "New York": "NY",
    "North Carolina": "NC", "North Dakota": "ND", "Ohio": "OH", "Oklahoma": "OK",
    "Oregon": "OR", "Pennsylvania": "PA", "Rhode Island": "RI", "South Carolina": "SC",
    "South Dakota": "SD", "Tennessee": "TN", "Texas": "TX", "Utah": "UT",
    "Vermont": "VT", "Virginia": "VA", "Washington": "WA", "West Virginia": "WV",
    "Wisconsin": "WI", "Wyoming": "WY", "District of Columbia": "DC",
}

# Nominatim reports the locality under different keys depending on population
CITY_FIELDS = ("city", "town", "village", "municipality", "hamlet")


def state_abbreviation(state: str) -> str:
    """Two-letter code for a full US state name, falling back to its first two letters."""
    if not state:
        return ""
    return STATE_ABBREVIATIONS.get(state, state[:2].upper())


class ForwardResolver(Protocol):
    """
    ZIP code to centroid lookup.

    Implementations must give up within ``timeout`` seconds. The service
    stops waiting at that point, but a call that ignores the timeout keeps
    its worker thread busy and can block interpreter exit.
    """

    def resolve_zip(self, zip_code: str, timeout: float) -> Optional[GeoCoordinates]:
        ...


class ReverseResolver(Protocol):
    """Point to city, state and ZIP lookup. Must honour ``timeout`` like ``ForwardResolver``."""

    def resolve_point(self, latitude: float, longitude: float, timeout: float) -> Optional[ReverseGeoResult]:
        ...


class ZippopotamResolver:
    """Forward ZIP lookup against the Zippopotam.us API."""

    def __init__(self, base_url: str = DEFAULT_ZIPPOPOTAM_URL, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()

    def resolve_zip(self, zip_code: str, timeout: float) -> Optional[GeoCoordinates]:
        """
        Resolve a 5-digit ZIP code to its centroid.

        Args:
            zip_code: Cleaned 5-digit ZIP code
            timeout: HTTP timeout in seconds

        Returns:
            GeoCoordinates for the first place listed, or None
        """
        try:
            response = self.session.get(f"{self.base_url}/{zip_code}", timeout=timeout)
            if response.status_code == 404:
                logger.warning(f"ZIP code not found: {zip_code}")
                return None
            response.raise_for_status()
            payload = response.json()
        except requests.RequestException as e:
            logger.error(f"Zippopotam API error for ZIP {zip_code}: {e}")
            return None
        except ValueError as e:
            logger.error(f"Invalid Zippopotam payload for ZIP {zip_code}: {e}")
            return None

        places = payload.get("places") or []
        if not places:
            logger.warning(f"No location data for ZIP: {zip_code}")
            return None

        place = places[0]
        try:
            result = GeoCoordinates(
                latitude=float(place["latitude"]),
                longitude=float(place["longitude"]),
                city=place.get("place name", ""),
                state=place.get("state", ""),
                state_abbrev=place.get("state abbreviation", ""),
                country=payload.get("country", ""),
            )
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"Malformed place for ZIP {zip_code}: {e}")
            return None

        logger.info(f"Resolved ZIP {zip_code} -> {result.city}, {result.state_abbrev} "
                    f"({result.latitude}, {result.longitude})")
        return result


class NominatimResolver:
    """Reverse point lookup against OpenStreetMap Nominatim."""

    def __init__(self, base_url: str = DEFAULT_NOMINATIM_URL, user_agent: str = DEFAULT_USER_AGENT,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url
        self.user_agent = user_agent
        self.session = session or requests.Session()

    def resolve_point(self, latitude: float, longitude: float, timeout: float) -> Optional[ReverseGeoResult]:
        """
        Resolve a point to city, state and ZIP.

        Args:
            latitude: Latitude in degrees
            longitude: Longitude in degrees
            timeout: HTTP timeout in seconds

        Returns:
            ReverseGeoResult, or None if no address was found
        """
        params = {"lat": latitude, "lon": longitude, "format": "json", "addressdetails": 1}
        headers = {"User-Agent": self.user_agent}

        try:
            response = self.session.get(self.base_url, params=params, headers=headers, timeout=timeout)
            response.raise_for_status()
            payload = response.json()
        except requests.RequestException as e:
            logger.error(f"Nominatim API error for ({latitude}, {longitude}): {e}")
            return None
        except ValueError as e:
            logger.error(f"Invalid Nominatim payload for ({latitude}, {longitude}): {e}")
            return None

        if not isinstance(payload, dict) or payload.get("error") or not payload.get("address"):
            logger.warning(f"No address found for ({latitude}, {longitude})")
            return None

        return self._parse_address(payload["address"])

    @staticmethod
    def _parse_address(address: Dict[str, Any]) -> ReverseGeoResult:
        state = address.get("state") or ""
        city = next((address[field] for field in CITY_FIELDS if address.get(field)), "")

        street = None
        if address.get("road"):
            street = f"{address.get('house_number') or ''} {address['road']}".strip()

        return ReverseGeoResult(
            city=city,
            state=state,
            state_abbrev=state_abbreviation(state),
            zip_code=(address.get("postcode") or "")[:5],
            county=address.get("county"),
            street=street,
        )
