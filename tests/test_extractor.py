import asyncio
import json

import pytest

from expofinder.scraper.errors import CredentialMissing, ExtractionFailure
from expofinder.scraper.extractor import LLMExtractor, parse_exhibitions, strip_code_fence

from conftest import FakeChatClient

RECORDS = [
    {
        "title": "Rubens and Women",
        "artist": "Peter Paul Rubens",
        "start_date": "2025-10-03",
        "end_date": "2026-01-18",
        "description": "Portraits of the women in Rubens' life",
        "image_url": "https://rubenshuis.be/img/women.jpg",
        "exhibition_url": "https://rubenshuis.be/en/rubens-and-women",
    },
    {"title": "Permanent collection"},
]
BARE = json.dumps(RECORDS)


def extract(reply, source_url="https://rubenshuis.be"):
    llm = LLMExtractor(api_key=None, client=FakeChatClient(reply))
    return asyncio.run(llm.extract_exhibitions("<p>content</p>", source_url))


@pytest.mark.parametrize("fenced", [
    f"```json\n{BARE}\n```",
    f"```\n{BARE}\n```",
    f"  ```json\n{BARE}```  ",
])
def test_fenced_output_parses_like_bare_json(fenced):
    assert parse_exhibitions(fenced) == parse_exhibitions(BARE)
    assert extract(fenced).exhibitions == extract(BARE).exhibitions


def test_strip_code_fence_leaves_plain_text_alone():
    assert strip_code_fence('  [{"title": "x"}] ') == '[{"title": "x"}]'


def test_missing_optional_fields_default_to_none():
    result = extract(BARE)
    assert result.ok
    second = result.exhibitions[1]
    assert second.title == "Permanent collection"
    assert second.artist is None
    assert second.start_date is None
    assert second.exhibition_url is None


def test_extractor_does_not_fill_exhibition_url_from_source():
    result = extract(json.dumps([{"title": "No link"}]), source_url="https://kmska.be")
    assert result.exhibitions[0].exhibition_url is None


def test_artist_lists_and_loose_dates_are_normalized():
    reply = json.dumps([{"title": "Duo", "artist": ["Anni Albers", "Josef Albers"],
                         "start_date": "3 October 2025", "end_date": "not announced"}])
    rec = extract(reply).exhibitions[0]
    assert rec.artist == "Anni Albers, Josef Albers"
    assert rec.start_date == "2025-10-03"
    assert rec.end_date is None


@pytest.mark.parametrize("raw, expected", [
    ("3 October 2025", "2025-10-03"),
    ("03/10/2025", "2025-10-03"),
    ("2025/10/03", "2025-10-03"),
    ("2025-10-03", "2025-10-03"),
    ("October 2025", None),
    ("2025-10", None),
    ("2026", None),
    ("3 October", None),
    ("ongoing", None),
])
def test_only_complete_dates_are_kept(raw, expected):
    rec = extract(json.dumps([{"title": "Dated", "start_date": raw}])).exhibitions[0]
    assert rec.start_date == expected


def test_titles_are_whitespace_normalized():
    reply = json.dumps([{"title": "  Impressionism\n   Today "}, {"title": " \n "}])
    result = extract(reply)
    assert [r.title for r in result.exhibitions] == ["Impressionism Today"]


def test_items_without_title_are_dropped():
    reply = json.dumps([{"artist": "Nobody"}, {"title": "Kept"}, "stray string"])
    result = extract(reply)
    assert result.ok
    assert [r.title for r in result.exhibitions] == ["Kept"]


def test_empty_array_is_ok_and_empty():
    result = extract("[]")
    assert result.ok
    assert result.exhibitions == []


def test_malformed_output_fails_soft():
    result = extract("Sorry, I could not find any exhibitions.")
    assert not result.ok
    assert result.exhibitions == []
    assert "JSON" in result.error


def test_non_array_json_fails_soft():
    result = extract(json.dumps({"exhibitions": RECORDS}))
    assert not result.ok
    assert result.exhibitions == []


def test_parse_exhibitions_raises_extraction_failure():
    with pytest.raises(ExtractionFailure):
        parse_exhibitions("{not json")


def test_request_errors_fail_soft():
    result = extract(RuntimeError("upstream 502"))
    assert not result.ok
    assert result.exhibitions == []
    assert "upstream 502" in result.error


def test_request_shape():
    client = FakeChatClient("[]")
    llm = LLMExtractor(api_key=None, client=client, model="gpt-4o")
    asyncio.run(llm.extract_exhibitions("<h2>Show</h2>", "https://www.muhka.be"))

    call = client.calls[0]
    assert call["model"] == "gpt-4o"
    assert call["temperature"] == 0.1
    assert call["max_tokens"] == 2000
    assert [m["role"] for m in call["messages"]] == ["system", "user"]
    prompt = call["messages"][1]["content"]
    assert "<h2>Show</h2>" in prompt
    assert "Source URL: https://www.muhka.be" in prompt
    assert "YYYY-MM-DD" in prompt


def test_missing_api_key_is_fatal():
    with pytest.raises(CredentialMissing):
        LLMExtractor(api_key=None)
