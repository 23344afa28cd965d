import json
from types import SimpleNamespace

import httpx
import pytest

from expofinder.settings import Settings
from expofinder.scraper.extractor import LLMExtractor
from expofinder.scraper.models import DatabaseManager
from expofinder.scraper.ratelimit import MinIntervalLimiter


class FakeChatClient:
    """Stands in for openai.OpenAI: `client.chat.completions.create(...)`"""

    def __init__(self, reply="[]"):
        self.reply = reply
        self.calls = []
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    def _create(self, **kwargs):
        self.calls.append(kwargs)
        reply = self.reply(kwargs) if callable(self.reply) else self.reply
        if isinstance(reply, Exception):
            raise reply
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=reply))])


def exhibitions_json(*titles, **extra):
    return json.dumps([{"title": t, **extra} for t in titles])


@pytest.fixture
def db(tmp_path):
    return DatabaseManager(str(tmp_path / "expofinder.db"))


@pytest.fixture
def fake_client():
    return FakeChatClient()


@pytest.fixture
def llm(fake_client):
    return LLMExtractor(api_key=None, client=fake_client)


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def limiter(sleeps):
    async def fake_sleep(delay):
        sleeps.append(delay)
    return MinIntervalLimiter(2.0, name="test", sleep=fake_sleep)


@pytest.fixture
def settings(tmp_path):
    return Settings(db_path=str(tmp_path / "expofinder.db"), google_maps_api_key="places-key",
                    openai_api_key="sk-test", index_interval=0)


def page(body: str) -> str:
    return f"<html><head><title>t</title></head><body>{body}</body></html>"


def html_response(body: str, status_code=200) -> httpx.Response:
    return httpx.Response(status_code, text=body, headers={"content-type": "text/html"})


@pytest.fixture(autouse=True)
def no_proxy_env(monkeypatch):
    # httpx mounts proxy transports from the environment ahead of a mocked transport
    for name in ("HTTP_PROXY", "HTTPS_PROXY", "ALL_PROXY", "http_proxy", "https_proxy", "all_proxy"):
        monkeypatch.delenv(name, raising=False)
