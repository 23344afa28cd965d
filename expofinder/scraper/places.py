"""
Google Places text search / details client
"""
import logging
from dataclasses import dataclass
from typing import List, Optional, Dict, Any

import httpx

from expofinder.scraper.errors import PlacesError

logger = logging.getLogger(__name__)

PLACES_BASE_URL = "https://maps.googleapis.com/maps/api/place"
DETAIL_FIELDS = "name,formatted_address,geometry,website"


@dataclass
class PlaceDetails:
    place_id: str
    name: str
    formatted_address: str
    latitude: Optional[float]
    longitude: Optional[float]
    website: Optional[str]


class PlacesClient:
    def __init__(self, api_key: str, timeout=15.0, base_url: str = PLACES_BASE_URL,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def close(self):
        await self.client.aclose()

    async def __aenter__(self) -> "PlacesClient":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def _get_json(self, endpoint: str, params: Dict[str, str]) -> Dict[str, Any]:
        url = f"{self.base_url}/{endpoint}/json"
        try:
            r = await self.client.get(url, params={**params, "key": self.api_key})
            r.raise_for_status()
            return r.json()
        except (httpx.HTTPError, ValueError) as e:
            raise PlacesError(f"Places {endpoint} request failed: {e}") from e

    async def text_search(self, query: str) -> List[Dict[str, Any]]:
        """Candidate places for a free-text query ("museum in Antwerp")"""
        data = await self._get_json("textsearch", {"query": query})
        status = data.get("status")
        if status == "ZERO_RESULTS":
            return []
        if status != "OK":
            raise PlacesError(f"Places text search for '{query}' returned {status}")
        return data.get("results", [])

    async def details(self, place_id: str) -> PlaceDetails:
        data = await self._get_json("details", {"place_id": place_id, "fields": DETAIL_FIELDS})
        status = data.get("status")
        if status != "OK":
            raise PlacesError(f"Places details for {place_id} returned {status}")

        result = data.get("result", {})
        location = (result.get("geometry") or {}).get("location") or {}
        return PlaceDetails(
            place_id=place_id,
            name=result.get("name", ""),
            formatted_address=result.get("formatted_address", ""),
            latitude=location.get("lat"),
            longitude=location.get("lng"),
            website=result.get("website") or None,
        )
