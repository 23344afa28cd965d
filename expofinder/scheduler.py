"""
Entry points for indexing runs: full re-index, single source, new city, plus the CLI
"""
import sys, math, uuid, asyncio, logging, traceback
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from expofinder.settings import Settings
from expofinder.scraper.condenser import PageCondenser
from expofinder.scraper.discovery import VenueDiscovery
from expofinder.scraper.errors import CooldownActive, CredentialMissing, ExpoFinderError
from expofinder.scraper.extractor import LLMExtractor
from expofinder.scraper.geocoding import Geocoder
from expofinder.scraper.models import DatabaseManager, Venue
from expofinder.scraper.orchestrator import IndexingOrchestrator
from expofinder.scraper.places import PlacesClient
from expofinder.scraper.ratelimit import MinIntervalLimiter
from expofinder.scraper.utils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class IndexJob:
    """Handle for a run started in the background; poll `status` instead of awaiting the task."""
    kind: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    status: str = "pending"          # pending | running | completed | failed
    created_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    result: Any = None
    error: Optional[str] = None
    task: Optional[asyncio.Task] = field(default=None, repr=False, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind,
            "status": self.status,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "result": self.result,
            "error": self.error,
        }


class IndexScheduler:
    def __init__(self, settings: Settings, db: Optional[DatabaseManager] = None,
                 llm: Optional[LLMExtractor] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 limiter: Optional[MinIntervalLimiter] = None):
        """
        `transport` replaces the network for every HTTP client the scheduler builds
        (venue sites, Places, geocoding); used by tests.
        """
        self.settings = settings
        self.db = db or DatabaseManager(settings.db_path)
        self._llm = llm
        self.transport = transport
        self.limiter = limiter or MinIntervalLimiter(settings.index_interval, name="indexing")
        self.jobs: Dict[str, IndexJob] = {}

    # --------- Collaborators ----------
    def get_llm(self) -> LLMExtractor:
        if self._llm is None:
            self._llm = LLMExtractor(
                api_key=self.settings.openai_api_key,
                base_url=self.settings.openai_base_url,
                model=self.settings.llm_model,
                timeout=self.settings.llm_timeout,
            )
        return self._llm

    def _condenser(self) -> PageCondenser:
        return PageCondenser(timeout=self.settings.http_timeout, transport=self.transport)

    def _orchestrator(self, condenser: PageCondenser) -> IndexingOrchestrator:
        return IndexingOrchestrator(self.db, condenser, self.get_llm(), limiter=self.limiter)

    # --------- Produced interface ----------
    async def index_all_sources(self) -> List[Dict[str, Any]]:
        llm = self.get_llm()
        logger.info(f"Starting indexing of all active sources (model {llm.model})")
        async with self._condenser() as condenser:
            return await self._orchestrator(condenser).index_all_sources()

    async def index_single_source(self, source_id: int) -> Dict[str, Any]:
        self.get_llm()
        async with self._condenser() as condenser:
            return await self._orchestrator(condenser).index_single_source(source_id)

    def check_cooldown(self, city: str, now: Optional[datetime] = None) -> Optional[float]:
        """Raise CooldownActive if the city was indexed too recently; otherwise return hours since last index."""
        last_indexed = self.db.last_indexed_for_city(city)
        if last_indexed is None:
            return None

        hours_since = ((now or utcnow()) - last_indexed).total_seconds() / 3600
        if hours_since < self.settings.cooldown_hours:
            wait_hours = math.ceil(self.settings.cooldown_hours - hours_since)
            raise CooldownActive(city, hours_since, wait_hours)
        return hours_since

    async def add_city_and_index(self, city: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        self.check_cooldown(city, now=now)

        if not self.settings.google_maps_api_key:
            raise CredentialMissing("Google Maps", "GOOGLE_MAPS_API_KEY")
        self.get_llm()

        async with PlacesClient(self.settings.google_maps_api_key, timeout=self.settings.places_timeout,
                                transport=self.transport) as places, \
                self._condenser() as condenser:
            discovery = VenueDiscovery(self.db, places, self._orchestrator(condenser))
            result = await discovery.discover_venues(city)
        return result.to_dict()

    async def add_venue(self, name: str, city: str, country: str, address: Optional[str] = None,
                        website_url: Optional[str] = None, source_url: Optional[str] = None) -> Venue:
        """Register a venue by hand, geocoding its address when one is given."""
        latitude = longitude = None
        if address:
            async with Geocoder(self.settings.google_maps_api_key, timeout=self.settings.places_timeout,
                                transport=self.transport) as geocoder:
                geocoded = await geocoder.geocode(f"{address}, {city}, {country}")
            if geocoded:
                latitude, longitude = geocoded["latitude"], geocoded["longitude"]

        return self.db.add_venue(name, city, country, address=address, latitude=latitude,
                                 longitude=longitude, website_url=website_url, source_url=source_url)

    # --------- Background runs ----------
    def start_background(self, kind: str, run: Callable[[], Awaitable[Any]]) -> IndexJob:
        """Start `run()` as an asyncio task and return a job record the caller can poll."""
        job = IndexJob(kind=kind)
        self.jobs[job.id] = job

        async def _runner():
            job.status = "running"
            job.started_at = utcnow()
            try:
                job.result = await run()
                job.status = "completed"
            except asyncio.CancelledError:
                job.status = "failed"
                job.error = "cancelled"
                logger.warning(f"Background job {job.id} ({kind}) was cancelled")
                raise
            except Exception as e:
                job.status = "failed"
                job.error = str(e) or type(e).__name__
                logger.error(f"Background job {job.id} ({kind}) failed: {job.error}")
                logger.debug(traceback.format_exc())
            finally:
                job.finished_at = utcnow()

        job.task = asyncio.create_task(_runner(), name=f"{kind}-{job.id}")
        logger.info(f"Started background job {job.id} ({kind})")
        return job

    def start_index_all(self) -> IndexJob:
        return self.start_background("index_all", self.index_all_sources)

    def start_add_city(self, city: str) -> IndexJob:
        # cooldown is checked up front so the caller gets the rejection immediately
        self.check_cooldown(city)
        return self.start_background("add_city", lambda: self.add_city_and_index(city))

    def get_job(self, job_id: str) -> Optional[IndexJob]:
        return self.jobs.get(job_id)

    def list_jobs(self) -> List[IndexJob]:
        return sorted(self.jobs.values(), key=lambda j: j.created_at, reverse=True)


# -------------------- CLI Interface --------------------

def _print_results(results: List[Dict[str, Any]]):
    successful = [r for r in results if r["status"] == "success"]
    failed = [r for r in results if r["status"] == "failed"]
    print(f"✓ Successful: {len(successful)}")
    print(f"✗ Failed: {len(failed)}")
    print(f"Total exhibitions found: {sum(r['exhibitions_found'] for r in successful)}")
    for f in failed:
        print(f"  - {f['venue']}: {f['error']}")


async def main(argv: Optional[List[str]] = None) -> int:
    """Command line interface for indexing runs"""
    import argparse

    parser = argparse.ArgumentParser(description="Exhibition index pipeline")
    parser.add_argument("--action", required=True,
                        choices=["init-db", "seed", "import-csv", "index-all", "index-source",
                                 "add-city", "add-venue", "status", "logs"],
                        help="Action to perform")
    parser.add_argument("--source", type=int, help="Source id for index-source")
    parser.add_argument("--city", help="City for add-city / add-venue")
    parser.add_argument("--name", help="Venue name for add-venue")
    parser.add_argument("--country", help="Country for add-venue")
    parser.add_argument("--address", help="Street address for add-venue")
    parser.add_argument("--website", help="Website URL for add-venue (also used as its scraping source)")
    parser.add_argument("--csv", help="Path to venues CSV for import-csv")
    parser.add_argument("--db", help="Path to database file (overrides EXPOFINDER_DB)")
    args = parser.parse_args(argv)

    settings = Settings.from_env()
    if args.db:
        settings.db_path = args.db
    logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO),
                        format="%(asctime)s %(levelname)s %(name)s %(message)s")

    scheduler = IndexScheduler(settings)

    try:
        if args.action == "init-db":
            print(f"Database ready at {settings.db_path}")

        elif args.action == "seed":
            print(f"Seeded {scheduler.db.seed_venues()} venues")

        elif args.action == "import-csv":
            if not args.csv:
                parser.error("--csv is required for import-csv")
            print(f"Imported {scheduler.db.import_venues_from_csv(args.csv)} venues")

        elif args.action == "index-all":
            _print_results(await scheduler.index_all_sources())

        elif args.action == "index-source":
            if args.source is None:
                parser.error("--source is required for index-source")
            result = await scheduler.index_single_source(args.source)
            print(f"✓ {result['venue']}: {result['exhibitions_found']} exhibitions found")

        elif args.action == "add-city":
            if not args.city:
                parser.error("--city is required for add-city")
            result = await scheduler.add_city_and_index(args.city)
            print(f"✓ {result['city']}: {result['venues_added']} venues added, "
                  f"{result['exhibitions_found']} exhibitions found")
            for f in result["failed_venues"]:
                print(f"  ✗ {f['name']}: {f['error']}")

        elif args.action == "add-venue":
            if not (args.name and args.city and args.country):
                parser.error("--name, --city and --country are required for add-venue")
            venue = await scheduler.add_venue(args.name, args.city, args.country, address=args.address,
                                              website_url=args.website, source_url=args.website)
            print(f"✓ {venue.name} (id={venue.id}) at {venue.latitude}, {venue.longitude}")

        elif args.action == "status":
            for city, status in sorted(scheduler.db.get_city_status().items()):
                last = status["last_indexed"].isoformat() if status["last_indexed"] else "never"
                print(f"{city}: last indexed {last}, {status['recent_failures']} failures in 7 days")

        elif args.action == "logs":
            for log in scheduler.db.get_logs(source_id=args.source):
                print(f"{log.scraped_at:%Y-%m-%d %H:%M} source={log.source_id} {log.status} "
                      f"found={log.exhibitions_found} {log.error_message or ''}".rstrip())

    except ExpoFinderError as e:
        print(f"✗ {e}")
        return 1
    return 0


def cli():
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
