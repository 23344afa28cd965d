import time, json, re, asyncio, logging
from typing import Any, List, Optional

from openai import OpenAI
from pydantic import ValidationError

from expofinder.scraper.errors import CredentialMissing, ExtractionFailure
from expofinder.scraper.models import ExhibitionRecord, ExtractionResult

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a helpful assistant that extracts structured data from text. "
    "You always respond with valid JSON only."
)

PROMPT_TEMPLATE = """You are an expert at extracting art exhibition information from museum and gallery websites.

Analyze the following webpage content and extract ALL current and upcoming exhibitions.

For each exhibition, extract:
- title: The exhibition title
- artist: Artist name(s) if mentioned
- start_date: Start date in YYYY-MM-DD format (or null if not found)
- end_date: End date in YYYY-MM-DD format (or null if not found)
- description: Brief description (max 200 chars)
- image_url: URL of the main exhibition image (full URL, or null if not found)
- exhibition_url: Direct link to the exhibition page (use the source URL if no specific link found)

Return ONLY a valid JSON array of exhibitions. If no exhibitions found, return an empty array [].

Example format:
[
  {{
    "title": "Impressionism Today",
    "artist": "Claude Monet",
    "start_date": "2024-01-15",
    "end_date": "2024-04-30",
    "description": "A retrospective of Monet's water lilies series",
    "image_url": "https://example.com/images/monet-exhibition.jpg",
    "exhibition_url": "https://example.com/exhibitions/monet"
  }}
]

Website content:
{content}

Source URL: {source_url}

Return only the JSON array, no other text."""

_FENCE_OPEN = re.compile(r"^```(?:json)?\n?")
_FENCE_CLOSE = re.compile(r"\n?```$")


def strip_code_fence(content: str) -> str:
    content = content.strip()
    if content.startswith("```"):
        content = _FENCE_OPEN.sub("", content)
        content = _FENCE_CLOSE.sub("", content)
        content = content.strip()
    return content


def parse_exhibitions(content: str) -> List[ExhibitionRecord]:
    """Parse raw model output (optionally fenced) into exhibition records.

    Raises ExtractionFailure when the payload is not a JSON array. Individual
    items that fail validation are dropped.
    """
    try:
        data = json.loads(strip_code_fence(content))
    except json.JSONDecodeError as e:
        raise ExtractionFailure(f"Model output is not valid JSON: {e}") from e

    if not isinstance(data, list):
        raise ExtractionFailure(f"Expected a JSON array, got {type(data).__name__}")

    records = []
    for i, item in enumerate(data):
        if not isinstance(item, dict):
            logger.warning(f"[LLM] Item {i+1} is not an object, skipped")
            continue
        try:
            records.append(ExhibitionRecord(**item))
        except ValidationError as e:
            logger.warning(f"[LLM] Validation error for item {i+1}: {e}")
    return records


class LLMExtractor:
    def __init__(self, api_key: Optional[str], base_url: Optional[str] = None,
                 model="gpt-4o", timeout=90.0, temperature=0.1, max_tokens=2000,
                 client: Any = None):
        if client is None:
            if not api_key:
                raise CredentialMissing("OpenAI", "OPENAI_API_KEY")
            # no retries: a failed call is reported, the next index run tries again
            client = OpenAI(api_key=api_key, base_url=base_url, timeout=timeout, max_retries=0)
        self.client = client
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens

    def build_prompt(self, content: str, source_url: str) -> str:
        return PROMPT_TEMPLATE.format(content=content, source_url=source_url)

    def _complete(self, prompt: str) -> str:
        logger.info(f"[LLM] Making API call to {self.model} (prompt length: {len(prompt)} chars)")
        t_start = time.perf_counter()
        resp = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        content = resp.choices[0].message.content or ""
        elapsed = (time.perf_counter() - t_start) * 1000
        logger.info(f"[LLM] API call completed in {elapsed:.1f}ms (response: {len(content)} chars)")
        return content

    def extract_exhibitions_sync(self, content: str, source_url: str) -> ExtractionResult:
        try:
            raw = self._complete(self.build_prompt(content, source_url))
            records = parse_exhibitions(raw)
        except Exception as e:
            # fail soft: the caller still gets a (empty) list, with the reason attached
            logger.error(f"[LLM] Extraction failed for {source_url}: {e}")
            return ExtractionResult(exhibitions=[], error=str(e) or type(e).__name__)

        logger.info(f"[LLM] Found {len(records)} exhibitions for {source_url}")
        return ExtractionResult(exhibitions=records)

    async def extract_exhibitions(self, content: str, source_url: str) -> ExtractionResult:
        # openai's sync client blocks; keep the event loop free
        return await asyncio.to_thread(self.extract_exhibitions_sync, content, source_url)
