"""
Data models and SQLite persistence for the exhibition index
"""
import csv
import sqlite3
import logging
from contextlib import contextmanager
from datetime import datetime, timedelta
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, List, Dict, Any, Iterator, Tuple

from pydantic import BaseModel, field_validator

from expofinder.scraper.utils import norm_space, to_iso_date, utcnow, parse_timestamp

logger = logging.getLogger(__name__)

# -------------------- Data Models --------------------

@dataclass
class Venue:
    id: Optional[int]
    name: str
    city: str
    country: str
    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    website_url: Optional[str] = None
    created_at: Optional[datetime] = None

@dataclass
class ScrapingSource:
    id: int
    venue_id: int
    source_url: str
    source_type: str = "website"
    is_active: bool = True
    last_scraped_at: Optional[datetime] = None
    venue_name: Optional[str] = None

@dataclass
class StoredExhibition:
    id: int
    venue_id: int
    title: str
    artist: Optional[str] = None
    description: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    image_url: Optional[str] = None
    exhibition_url: Optional[str] = None
    last_scraped_at: Optional[datetime] = None

@dataclass
class ScrapeLog:
    id: int
    source_id: int
    status: str
    exhibitions_found: int
    error_message: Optional[str] = None
    scraped_at: Optional[datetime] = None

class ExhibitionRecord(BaseModel):
    title: str
    artist: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    exhibition_url: Optional[str] = None

    @field_validator("title", mode="before")
    @classmethod
    def _clean_title(cls, v):
        if isinstance(v, str):
            v = norm_space(v)
            if not v:
                raise ValueError("title is empty")
        return v

    @field_validator("artist", mode="before")
    @classmethod
    def _join_artists(cls, v):
        if isinstance(v, list):
            return ", ".join(str(a) for a in v if a) or None
        return v

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def _iso_date(cls, v):
        return to_iso_date(v) if isinstance(v, str) else None

@dataclass
class ExtractionResult:
    """What the extractor returns: records on success, or an empty list plus the failure reason."""
    exhibitions: List[ExhibitionRecord] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

# Initial set of venues, used by `--action seed`
SEED_VENUES: List[Dict[str, Any]] = [
    {"name": "KMSKA - Royal Museum of Fine Arts Antwerp", "city": "Antwerp", "country": "Belgium",
     "address": "Leopold De Waelplaats 2, 2000 Antwerpen", "latitude": 51.2171, "longitude": 4.4067,
     "website_url": "https://kmska.be"},
    {"name": "M HKA - Museum of Contemporary Art Antwerp", "city": "Antwerp", "country": "Belgium",
     "address": "Leuvenstraat 32, 2000 Antwerpen", "latitude": 51.2093, "longitude": 4.4038,
     "website_url": "https://www.muhka.be"},
    {"name": "MoMu - Fashion Museum Antwerp", "city": "Antwerp", "country": "Belgium",
     "address": "Nationalestraat 28, 2000 Antwerpen", "latitude": 51.2161, "longitude": 4.4015,
     "website_url": "https://www.momu.be"},
    {"name": "Museum Plantin-Moretus", "city": "Antwerp", "country": "Belgium",
     "address": "Vrijdagmarkt 22, 2000 Antwerpen", "latitude": 51.2195, "longitude": 4.4006,
     "website_url": "https://www.museumplantinmoretus.be"},
    {"name": "Rubens House", "city": "Antwerp", "country": "Belgium",
     "address": "Wapper 9-11, 2000 Antwerpen", "latitude": 51.2189, "longitude": 4.4053,
     "website_url": "https://www.rubenshuis.be"},
]

# -------------------- Database Manager --------------------

class DatabaseManager:
    TABLES = ("venues", "scraping_sources", "exhibitions", "scraping_logs")

    def __init__(self, db_path: str = "data/expofinder.db"):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.init_database()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """One connection per call; commits on success, rolls back on error, always closes."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextmanager
    def _write_transaction(self) -> Iterator[sqlite3.Connection]:
        """Explicit BEGIN IMMEDIATE: takes the write lock up front so concurrent writers queue."""
        conn = sqlite3.connect(self.db_path, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.execute("COMMIT")
        except Exception:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    def init_database(self):
        """Create schema if missing"""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS venues (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    city TEXT NOT NULL,
                    country TEXT NOT NULL,
                    address TEXT,
                    latitude REAL,
                    longitude REAL,
                    website_url TEXT,
                    created_at TIMESTAMP NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS scraping_sources (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    venue_id INTEGER NOT NULL,
                    source_url TEXT NOT NULL,
                    source_type TEXT NOT NULL DEFAULT 'website',
                    is_active BOOLEAN NOT NULL DEFAULT 1,
                    last_scraped_at TIMESTAMP,
                    created_at TIMESTAMP NOT NULL,
                    FOREIGN KEY (venue_id) REFERENCES venues(id)
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS exhibitions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    venue_id INTEGER NOT NULL,
                    title TEXT NOT NULL,
                    artist TEXT,
                    description TEXT,
                    start_date DATE,
                    end_date DATE,
                    image_url TEXT,
                    exhibition_url TEXT,
                    last_scraped_at TIMESTAMP NOT NULL,
                    FOREIGN KEY (venue_id) REFERENCES venues(id)
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS scraping_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    source_id INTEGER NOT NULL,
                    status TEXT NOT NULL CHECK (status IN ('success', 'failed')),
                    exhibitions_found INTEGER NOT NULL DEFAULT 0,
                    error_message TEXT,
                    scraped_at TIMESTAMP NOT NULL,
                    FOREIGN KEY (source_id) REFERENCES scraping_sources(id)
                )
            """)

            indexes = [
                "CREATE INDEX IF NOT EXISTS idx_venues_city ON venues(city)",
                "CREATE INDEX IF NOT EXISTS idx_venues_website ON venues(website_url)",
                "CREATE INDEX IF NOT EXISTS idx_venues_name ON venues(name)",
                "CREATE INDEX IF NOT EXISTS idx_sources_venue ON scraping_sources(venue_id)",
                "CREATE INDEX IF NOT EXISTS idx_exhibitions_venue ON exhibitions(venue_id)",
                "CREATE INDEX IF NOT EXISTS idx_logs_source ON scraping_logs(source_id, scraped_at)",
            ]
            for index_sql in indexes:
                conn.execute(index_sql)

    # -------------------- Writes --------------------

    def _find_venue(self, conn, name: str, website_url: Optional[str]) -> Optional[int]:
        # website is the stronger identity: it wins over a name match
        if website_url:
            row = conn.execute("SELECT id FROM venues WHERE website_url = ? ORDER BY id LIMIT 1",
                               (website_url,)).fetchone()
            if row:
                return row[0]
        row = conn.execute("SELECT id FROM venues WHERE name = ? ORDER BY id LIMIT 1", (name,)).fetchone()
        return row[0] if row else None

    def upsert_venue(self, attrs: Dict[str, Any]) -> Tuple[int, bool]:
        """Insert a venue unless one already matches by website or name.

        Returns (venue_id, created). An existing row is returned as-is; its
        attributes are not updated.
        """
        with self._write_transaction() as conn:
            existing = self._find_venue(conn, attrs["name"], attrs.get("website_url"))
            if existing is not None:
                logger.debug(f"[DB] Venue '{attrs['name']}' already exists (id={existing})")
                return existing, False

            cursor = conn.execute("""
                INSERT INTO venues (name, city, country, address, latitude, longitude, website_url, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                attrs["name"],
                attrs["city"],
                attrs.get("country") or "",
                attrs.get("address"),
                attrs.get("latitude"),
                attrs.get("longitude"),
                attrs.get("website_url"),
                utcnow().isoformat(),
            ))
            logger.info(f"[DB] Added venue '{attrs['name']}' (id={cursor.lastrowid})")
            return cursor.lastrowid, True

    def ensure_source(self, venue_id: int, url: str, source_type: str = "website") -> int:
        with self._write_transaction() as conn:
            row = conn.execute("SELECT id FROM scraping_sources WHERE venue_id = ? ORDER BY id LIMIT 1",
                               (venue_id,)).fetchone()
            if row:
                return row[0]
            cursor = conn.execute("""
                INSERT INTO scraping_sources (venue_id, source_url, source_type, is_active, created_at)
                VALUES (?, ?, ?, 1, ?)
            """, (venue_id, url, source_type, utcnow().isoformat()))
            return cursor.lastrowid

    def replace_exhibitions(self, venue_id: int, records: List[ExhibitionRecord], fallback_url: str) -> int:
        """Swap the venue's exhibitions for `records` in one transaction. Returns rows written."""
        now = utcnow().isoformat()
        with self._write_transaction() as conn:
            deleted = conn.execute("DELETE FROM exhibitions WHERE venue_id = ?", (venue_id,)).rowcount
            for rec in records:
                conn.execute("""
                    INSERT INTO exhibitions (
                        venue_id, title, artist, description, start_date, end_date,
                        image_url, exhibition_url, last_scraped_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    venue_id,
                    rec.title,
                    rec.artist or None,
                    rec.description or None,
                    rec.start_date,
                    rec.end_date,
                    rec.image_url or None,
                    rec.exhibition_url or fallback_url,
                    now,
                ))
        logger.info(f"[DB] Venue {venue_id}: replaced {deleted} exhibitions with {len(records)}")
        return len(records)

    def append_log(self, source_id: int, status: str, exhibitions_found: int = 0,
                   error: Optional[str] = None) -> int:
        with self._connect() as conn:
            cursor = conn.execute("""
                INSERT INTO scraping_logs (source_id, status, exhibitions_found, error_message, scraped_at)
                VALUES (?, ?, ?, ?, ?)
            """, (source_id, status, exhibitions_found, error, utcnow().isoformat()))
            return cursor.lastrowid

    def touch_source(self, source_id: int, now: Optional[datetime] = None):
        with self._connect() as conn:
            conn.execute("UPDATE scraping_sources SET last_scraped_at = ? WHERE id = ?",
                         (parse_timestamp(now or utcnow()).isoformat(), source_id))

    def add_venue(self, name: str, city: str, country: str, address: Optional[str] = None,
                  latitude: Optional[float] = None, longitude: Optional[float] = None,
                  website_url: Optional[str] = None, source_url: Optional[str] = None) -> Venue:
        """Register a venue by hand; adds a scraping source when `source_url` is given."""
        venue_id, _ = self.upsert_venue({
            "name": name, "city": city, "country": country, "address": address,
            "latitude": latitude, "longitude": longitude, "website_url": website_url,
        })
        if source_url:
            self.ensure_source(venue_id, source_url)
        return self.get_venue(venue_id)

    def seed_venues(self, venues: List[Dict[str, Any]] = SEED_VENUES) -> int:
        added = 0
        for v in venues:
            venue_id, created = self.upsert_venue(v)
            if v.get("website_url"):
                self.ensure_source(venue_id, v["website_url"])
            if created:
                added += 1
                logger.info(f"[DB] Seeded {v['name']}")
        return added

    def import_venues_from_csv(self, csv_path: str) -> int:
        """Import venues from a CSV with columns name,city,country,address,website_url"""
        with open(csv_path, "r", encoding="utf-8") as f:
            rows = []
            for row in csv.DictReader(f):
                rows.append({
                    "name": row["name"].strip(),
                    "city": row["city"].strip(),
                    "country": row["country"].strip(),
                    "address": (row.get("address") or "").strip() or None,
                    "website_url": (row.get("website_url") or "").strip() or None,
                })
        count = self.seed_venues(rows)
        logger.info(f"[DB] Imported {count} new venues from {csv_path}")
        return count

    # -------------------- Reads --------------------

    @staticmethod
    def _venue_from_row(row) -> Venue:
        return Venue(
            id=row["id"],
            name=row["name"],
            city=row["city"],
            country=row["country"],
            address=row["address"],
            latitude=row["latitude"],
            longitude=row["longitude"],
            website_url=row["website_url"],
            created_at=parse_timestamp(row["created_at"]),
        )

    @staticmethod
    def _source_from_row(row) -> ScrapingSource:
        return ScrapingSource(
            id=row["id"],
            venue_id=row["venue_id"],
            source_url=row["source_url"],
            source_type=row["source_type"],
            is_active=bool(row["is_active"]),
            last_scraped_at=parse_timestamp(row["last_scraped_at"]),
            venue_name=row["venue_name"],
        )

    def get_venue(self, venue_id: int) -> Optional[Venue]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM venues WHERE id = ?", (venue_id,)).fetchone()
            return self._venue_from_row(row) if row else None

    def get_venues(self, city: Optional[str] = None) -> List[Venue]:
        with self._connect() as conn:
            if city:
                rows = conn.execute("SELECT * FROM venues WHERE LOWER(city) = LOWER(?) ORDER BY name",
                                    (city,)).fetchall()
            else:
                rows = conn.execute("SELECT * FROM venues ORDER BY city, name").fetchall()
            return [self._venue_from_row(r) for r in rows]

    def get_source(self, source_id: int) -> Optional[ScrapingSource]:
        with self._connect() as conn:
            row = conn.execute("""
                SELECT ss.*, v.name AS venue_name
                FROM scraping_sources ss
                JOIN venues v ON ss.venue_id = v.id
                WHERE ss.id = ?
            """, (source_id,)).fetchone()
            return self._source_from_row(row) if row else None

    def get_active_sources(self) -> List[ScrapingSource]:
        with self._connect() as conn:
            rows = conn.execute("""
                SELECT ss.*, v.name AS venue_name
                FROM scraping_sources ss
                JOIN venues v ON ss.venue_id = v.id
                WHERE ss.is_active = 1
                ORDER BY ss.id
            """).fetchall()
            return [self._source_from_row(r) for r in rows]

    def get_exhibitions(self, venue_id: int) -> List[StoredExhibition]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM exhibitions WHERE venue_id = ? ORDER BY id",
                                (venue_id,)).fetchall()
            return [
                StoredExhibition(
                    id=r["id"], venue_id=r["venue_id"], title=r["title"], artist=r["artist"],
                    description=r["description"], start_date=r["start_date"], end_date=r["end_date"],
                    image_url=r["image_url"], exhibition_url=r["exhibition_url"],
                    last_scraped_at=parse_timestamp(r["last_scraped_at"]),
                )
                for r in rows
            ]

    def get_logs(self, source_id: Optional[int] = None, limit: int = 100) -> List[ScrapeLog]:
        """Most recent scrape log entries first"""
        query = "SELECT * FROM scraping_logs"
        params: List[Any] = []
        if source_id is not None:
            query += " WHERE source_id = ?"
            params.append(source_id)
        query += " ORDER BY scraped_at DESC, id DESC LIMIT ?"
        params.append(limit)

        with self._connect() as conn:
            return [
                ScrapeLog(
                    id=r["id"], source_id=r["source_id"], status=r["status"],
                    exhibitions_found=r["exhibitions_found"], error_message=r["error_message"],
                    scraped_at=parse_timestamp(r["scraped_at"]),
                )
                for r in conn.execute(query, params)
            ]

    def get_sources_overview(self) -> List[Dict[str, Any]]:
        """Every source with its venue, log count and most recent status"""
        with self._connect() as conn:
            cursor = conn.execute("""
                SELECT
                    ss.*,
                    v.name AS venue_name,
                    v.city,
                    (SELECT COUNT(*) FROM scraping_logs WHERE source_id = ss.id) AS log_count,
                    (SELECT status FROM scraping_logs WHERE source_id = ss.id
                      ORDER BY scraped_at DESC, id DESC LIMIT 1) AS last_status
                FROM scraping_sources ss
                JOIN venues v ON ss.venue_id = v.id
                ORDER BY ss.last_scraped_at IS NULL, ss.last_scraped_at DESC
            """)
            return [dict(row) for row in cursor]

    def last_indexed_for_city(self, city: str) -> Optional[datetime]:
        with self._connect() as conn:
            row = conn.execute("""
                SELECT MAX(ss.last_scraped_at) AS last_indexed
                FROM scraping_sources ss
                JOIN venues v ON ss.venue_id = v.id
                WHERE LOWER(v.city) = LOWER(?)
            """, (city,)).fetchone()
            return parse_timestamp(row["last_indexed"]) if row else None

    def get_city_status(self, now: Optional[datetime] = None) -> Dict[str, Dict[str, Any]]:
        """Per city: last index time and the number of failed scrapes in the past 7 days"""
        cutoff = ((now or utcnow()) - timedelta(days=7)).isoformat()
        with self._connect() as conn:
            cursor = conn.execute("""
                SELECT
                    v.city,
                    MAX(ss.last_scraped_at) AS last_indexed,
                    COUNT(CASE WHEN sl.status = 'failed' AND sl.scraped_at > ? THEN 1 END) AS recent_failures
                FROM venues v
                LEFT JOIN scraping_sources ss ON v.id = ss.venue_id
                LEFT JOIN scraping_logs sl ON ss.id = sl.source_id
                GROUP BY v.city
            """, (cutoff,))
            return {
                row["city"]: {
                    "last_indexed": parse_timestamp(row["last_indexed"]),
                    "recent_failures": row["recent_failures"] or 0,
                }
                for row in cursor
            }

    def count_rows(self, table: str) -> int:
        if table not in self.TABLES:
            raise ValueError(f"Unknown table: {table}")
        with self._connect() as conn:
            return conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
