"""
Address geocoding: Google Geocoding when a key is configured, OpenStreetMap Nominatim otherwise
"""
import logging
from typing import Optional, Dict, Any

import httpx

logger = logging.getLogger(__name__)

GOOGLE_GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"
NOMINATIM_URL = "https://nominatim.openstreetmap.org/search"


class Geocoder:
    def __init__(self, google_api_key: Optional[str] = None, timeout=15.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.google_api_key = (google_api_key or "").strip() or None
        # Nominatim's usage policy requires an identifying user agent
        self.client = httpx.AsyncClient(
            timeout=timeout,
            headers={"User-Agent": "ExpoFinderEurope/1.0"},
            transport=transport,
        )

    @property
    def backend(self) -> str:
        return "google" if self.google_api_key else "nominatim"

    async def close(self):
        await self.client.aclose()

    async def __aenter__(self) -> "Geocoder":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def geocode(self, address: str) -> Optional[Dict[str, Any]]:
        """Return {latitude, longitude, formatted_address}, or None if the address can't be resolved."""
        if self.google_api_key:
            return await self._geocode_google(address)
        logger.warning("[GEOCODE] Google Maps API key not set, using OpenStreetMap Nominatim")
        return await self._geocode_nominatim(address)

    async def _geocode_google(self, address: str) -> Optional[Dict[str, Any]]:
        try:
            r = await self.client.get(GOOGLE_GEOCODE_URL, params={"address": address, "key": self.google_api_key})
            r.raise_for_status()
            data = r.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"[GEOCODE] Google geocoding error for '{address}': {e}")
            return None

        if data.get("status") != "OK" or not data.get("results"):
            logger.error(f"[GEOCODE] Geocoding failed for '{address}': {data.get('status')}")
            return None

        first = data["results"][0]
        location = first["geometry"]["location"]
        return {
            "latitude": location["lat"],
            "longitude": location["lng"],
            "formatted_address": first.get("formatted_address", address),
        }

    async def _geocode_nominatim(self, address: str) -> Optional[Dict[str, Any]]:
        try:
            r = await self.client.get(NOMINATIM_URL, params={"q": address, "format": "json", "limit": 1})
            r.raise_for_status()
            data = r.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"[GEOCODE] Nominatim error for '{address}': {e}")
            return None

        if not data:
            logger.error(f"[GEOCODE] Nominatim found nothing for '{address}'")
            return None

        first = data[0]
        return {
            "latitude": float(first["lat"]),
            "longitude": float(first["lon"]),
            "formatted_address": first.get("display_name", address),
        }
