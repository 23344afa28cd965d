import time
import sqlite3
import logging
import traceback
from enum import Enum
from typing import Dict, Any, List, Optional

from expofinder.scraper.condenser import PageCondenser
from expofinder.scraper.extractor import LLMExtractor
from expofinder.scraper.errors import CredentialMissing, NotFoundError, IndexingError
from expofinder.scraper.models import DatabaseManager, ScrapingSource
from expofinder.scraper.ratelimit import MinIntervalLimiter

logger = logging.getLogger(__name__)

# errors that end the whole run instead of just the current source
FATAL_ERRORS = (sqlite3.Error, CredentialMissing)


class SourceState(str, Enum):
    PENDING = "pending"
    FETCHING = "fetching"
    EXTRACTING = "extracting"
    PERSISTING = "persisting"
    SUCCESS = "success"
    FAILED = "failed"


class IndexingOrchestrator:
    def __init__(self, db: DatabaseManager, condenser: PageCondenser, llm: LLMExtractor,
                 limiter: Optional[MinIntervalLimiter] = None):
        self.db = db
        self.c = condenser
        self.llm = llm
        self.limiter = limiter or MinIntervalLimiter(2.0, name="indexing")

    @staticmethod
    def _transition(source: ScrapingSource, state: SourceState) -> SourceState:
        logger.debug(f"[INDEX] source {source.id} ({source.venue_name}) -> {state.value}")
        return state

    async def index_source(self, source: ScrapingSource) -> Dict[str, Any]:
        """Fetch, extract and persist one source. Per-source failures are logged and reported, not raised."""
        venue = source.venue_name or f"venue {source.venue_id}"
        logger.info(f"[INDEX] Indexing {venue} ({source.source_url})")
        t_start = time.perf_counter()
        state = self._transition(source, SourceState.PENDING)

        try:
            state = self._transition(source, SourceState.FETCHING)
            content = await self.c.fetch_clean_content(source.source_url)

            state = self._transition(source, SourceState.EXTRACTING)
            extraction = await self.llm.extract_exhibitions(content, source.source_url)

            state = self._transition(source, SourceState.PERSISTING)
            saved = self.db.replace_exhibitions(source.venue_id, extraction.exhibitions, source.source_url)
            self.db.touch_source(source.id)
            self.db.append_log(source.id, SourceState.SUCCESS.value, len(extraction.exhibitions), extraction.error)

        except FATAL_ERRORS:
            raise
        except Exception as e:
            message = str(e) or type(e).__name__
            logger.error(f"[INDEX] ✗ {venue} failed while {state.value}: {message}")
            logger.debug("Traceback:\n" + traceback.format_exc())
            self._transition(source, SourceState.FAILED)
            self.db.append_log(source.id, SourceState.FAILED.value, 0, message)
            return {"venue": venue, "status": SourceState.FAILED.value, "error": message}

        self._transition(source, SourceState.SUCCESS)
        elapsed = (time.perf_counter() - t_start) * 1000
        logger.info(f"[INDEX] ✓ {venue}: saved {saved} exhibitions in {elapsed:.1f}ms")

        result = {
            "venue": venue,
            "status": SourceState.SUCCESS.value,
            "exhibitions_found": len(extraction.exhibitions),
            "exhibitions_saved": saved,
        }
        if not extraction.ok:
            result["extraction_error"] = extraction.error
        return result

    async def index_paced(self, source: ScrapingSource) -> Dict[str, Any]:
        """index_source, spaced from the previous attempt by the limiter's interval"""
        async with self.limiter:
            return await self.index_source(source)

    async def index_all_sources(self) -> List[Dict[str, Any]]:
        sources = self.db.get_active_sources()
        logger.info(f"[INDEX] Found {len(sources)} active sources to index")

        results: List[Dict[str, Any]] = []
        for i, source in enumerate(sources, 1):
            logger.info(f"[INDEX] ({i}/{len(sources)}) {source.venue_name}")
            results.append(await self.index_paced(source))

        successful = sum(1 for r in results if r["status"] == SourceState.SUCCESS.value)
        logger.info(f"[INDEX] Indexing complete: {successful} successful, {len(results) - successful} failed")
        return results

    async def index_single_source(self, source_id: int) -> Dict[str, Any]:
        source = self.db.get_source(source_id)
        if source is None:
            raise NotFoundError(f"Source {source_id} not found")

        result = await self.index_paced(source)
        if result["status"] == SourceState.FAILED.value:
            raise IndexingError(result["venue"], result["error"])
        return {"venue": result["venue"], "exhibitions_found": result["exhibitions_found"]}
