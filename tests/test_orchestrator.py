import asyncio

import httpx
import pytest

from expofinder.scraper.condenser import PageCondenser
from expofinder.scraper.errors import IndexingError, NotFoundError
from expofinder.scraper.models import ExhibitionRecord
from expofinder.scraper.orchestrator import IndexingOrchestrator

from conftest import exhibitions_json, html_response, page

SITES = {
    "kmska.be": page("<main><h2>Ensor's Wildest Dreams</h2></main>"),
    "www.muhka.be": None,   # unreachable
    "www.momu.be": page("<main><h2>Fashion Show</h2></main>"),
}


def site_handler(request):
    body = SITES.get(request.url.host)
    if body is None:
        raise httpx.ConnectError("Name or service not known", request=request)
    return html_response(body)


def add_source(db, name, url, city="Antwerp"):
    venue_id, _ = db.upsert_venue({"name": name, "city": city, "country": "Belgium", "website_url": url})
    return venue_id, db.ensure_source(venue_id, url)


def run_orchestrator(db, llm, limiter, call):
    async def run():
        async with PageCondenser(transport=httpx.MockTransport(site_handler)) as condenser:
            return await call(IndexingOrchestrator(db, condenser, llm, limiter=limiter))
    return asyncio.run(run())


def test_batch_continues_past_fetch_failure(db, llm, fake_client, limiter, sleeps):
    fake_client.reply = exhibitions_json("Show one", "Show two")
    kmska_id, kmska_src = add_source(db, "KMSKA", "https://kmska.be")
    _, muhka_src = add_source(db, "M HKA", "https://www.muhka.be")
    momu_id, momu_src = add_source(db, "MoMu", "https://www.momu.be")

    results = run_orchestrator(db, llm, limiter, lambda o: o.index_all_sources())

    assert [(r["venue"], r["status"]) for r in results] == [
        ("KMSKA", "success"), ("M HKA", "failed"), ("MoMu", "success"),
    ]
    assert results[0]["exhibitions_found"] == 2
    assert results[0]["exhibitions_saved"] == 2
    assert "Name or service not known" in results[1]["error"]

    (failed_log,) = db.get_logs(muhka_src)
    assert failed_log.status == "failed"
    assert failed_log.exhibitions_found == 0
    assert failed_log.error_message

    assert db.get_logs(kmska_src)[0].status == "success"
    assert db.get_source(muhka_src).last_scraped_at is None
    assert db.get_source(momu_src).last_scraped_at is not None
    assert len(db.get_exhibitions(momu_id)) == 2

    # pacing between the three attempts, none before the first
    assert len(sleeps) == 2
    assert all(0 < s <= 2.0 for s in sleeps)


def test_reindex_replaces_previous_exhibitions(db, llm, fake_client, limiter):
    venue_id, source_id = add_source(db, "KMSKA", "https://kmska.be")

    fake_client.reply = exhibitions_json("Old show")
    run_orchestrator(db, llm, limiter, lambda o: o.index_single_source(source_id))
    fake_client.reply = exhibitions_json("New show", exhibition_url="https://kmska.be/new")
    run_orchestrator(db, llm, limiter, lambda o: o.index_single_source(source_id))

    (only,) = db.get_exhibitions(venue_id)
    assert only.title == "New show"
    assert only.exhibition_url == "https://kmska.be/new"
    assert len(db.get_logs(source_id)) == 2


def test_exhibition_url_defaults_to_source(db, llm, fake_client, limiter):
    venue_id, source_id = add_source(db, "KMSKA", "https://kmska.be")
    fake_client.reply = exhibitions_json("No link")

    result = run_orchestrator(db, llm, limiter, lambda o: o.index_single_source(source_id))

    assert result == {"venue": "KMSKA", "exhibitions_found": 1}
    assert db.get_exhibitions(venue_id)[0].exhibition_url == "https://kmska.be"


def test_extraction_failure_is_a_success_with_reason(db, llm, fake_client, limiter):
    venue_id, source_id = add_source(db, "KMSKA", "https://kmska.be")
    db.replace_exhibitions(venue_id, [ExhibitionRecord(title="Stale")], "https://kmska.be")
    fake_client.reply = "not json at all"

    (result,) = run_orchestrator(db, llm, limiter, lambda o: o.index_all_sources())

    assert result["status"] == "success"
    assert result["exhibitions_found"] == 0
    assert "extraction_error" in result
    assert db.get_exhibitions(venue_id) == []
    log = db.get_logs(source_id)[0]
    assert log.status == "success"
    assert log.error_message == result["extraction_error"]


def test_single_source_unknown_id(db, llm, limiter):
    with pytest.raises(NotFoundError):
        run_orchestrator(db, llm, limiter, lambda o: o.index_single_source(999))


def test_single_source_failure_is_logged_and_raised(db, llm, limiter):
    _, source_id = add_source(db, "M HKA", "https://www.muhka.be")

    with pytest.raises(IndexingError) as exc:
        run_orchestrator(db, llm, limiter, lambda o: o.index_single_source(source_id))

    assert exc.value.venue == "M HKA"
    (log,) = db.get_logs(source_id)
    assert log.status == "failed"
    assert log.exhibitions_found == 0


def test_inactive_sources_are_skipped(db, llm, limiter):
    _, source_id = add_source(db, "KMSKA", "https://kmska.be")
    with db._connect() as conn:
        conn.execute("UPDATE scraping_sources SET is_active = 0 WHERE id = ?", (source_id,))

    assert run_orchestrator(db, llm, limiter, lambda o: o.index_all_sources()) == []
