"""
Venue discovery: find museums and galleries for a city through Places and index each one
"""
import logging
from dataclasses import dataclass, field, asdict
from typing import List, Dict, Any, Tuple

from expofinder.scraper.errors import PlacesError
from expofinder.scraper.models import DatabaseManager
from expofinder.scraper.orchestrator import IndexingOrchestrator, SourceState
from expofinder.scraper.places import PlacesClient, PlaceDetails
from expofinder.scraper.utils import country_from_address

logger = logging.getLogger(__name__)

# (places type, max results kept); searched in this order
CATEGORIES: Tuple[Tuple[str, int], ...] = (
    ("museum", 5),
    ("art_gallery", 10),
)


@dataclass
class DiscoveryResult:
    city: str
    venues_added: int = 0
    exhibitions_found: int = 0
    venues: List[Dict[str, Any]] = field(default_factory=list)
    failed_venues: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class VenueDiscovery:
    def __init__(self, db: DatabaseManager, places: PlacesClient, orchestrator: IndexingOrchestrator,
                 categories: Tuple[Tuple[str, int], ...] = CATEGORIES):
        self.db = db
        self.places = places
        self.orchestrator = orchestrator
        self.categories = categories

    async def _candidates(self, category: str, limit: int, city: str) -> List[Dict[str, Any]]:
        try:
            found = await self.places.text_search(f"{category} in {city}")
        except PlacesError as e:
            logger.error(f"[DISCOVERY] Search for {category} in {city} failed: {e}")
            return []
        logger.info(f"[DISCOVERY] {category}: {len(found)} candidates, keeping {min(limit, len(found))}")
        return found[:limit]

    async def _process_place(self, place: PlaceDetails, city: str, result: DiscoveryResult):
        venue_id, created = self.db.upsert_venue({
            "name": place.name,
            "city": city,
            "country": country_from_address(place.formatted_address),
            "address": place.formatted_address,
            "latitude": place.latitude,
            "longitude": place.longitude,
            "website_url": place.website,
        })
        if created:
            result.venues_added += 1
            logger.info(f"[DISCOVERY] ✅ Added {place.name}")
        else:
            logger.info(f"[DISCOVERY] ✓ {place.name} already exists")

        source_id = self.db.ensure_source(venue_id, place.website)
        source = self.db.get_source(source_id)

        outcome = await self.orchestrator.index_paced(source)
        if outcome["status"] == SourceState.SUCCESS.value:
            result.exhibitions_found += outcome["exhibitions_found"]
            result.venues.append({"name": place.name, "exhibitions_found": outcome["exhibitions_found"]})
        else:
            result.failed_venues.append({"name": place.name, "error": outcome["error"]})

    async def discover_venues(self, city: str) -> DiscoveryResult:
        """Search each category in turn and index every new place with a website, one at a time."""
        logger.info(f"[DISCOVERY] Adding venues for {city}...")
        result = DiscoveryResult(city=city)

        for category, limit in self.categories:
            for candidate in await self._candidates(category, limit, city):
                place_id = candidate.get("place_id")
                label = candidate.get("name") or place_id
                try:
                    place = await self.places.details(place_id)
                except PlacesError as e:
                    logger.error(f"[DISCOVERY] Failed to get details for {label}: {e}")
                    continue

                if not place.website:
                    logger.info(f"[DISCOVERY] ⏭️  Skipping {place.name} (no website)")
                    continue

                await self._process_place(place, city, result)

        logger.info(f"[DISCOVERY] City indexing complete for {city}: "
                    f"{result.venues_added} venues added, {result.exhibitions_found} exhibitions, "
                    f"{len(result.failed_venues)} failed")
        return result
