"""Tests for the NewsAPI-compatible headlines collaborator.

The HTTP session is replaced with a fake; nothing touches the network.
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
import requests

from hymn.adapters.news_http import NewsApiSource, article_to_item
from hymn.infra.exceptions import MalformedResponse, UpstreamError, UpstreamTimeout
from hymn.runtime.collaborators import NewsSource


class FakeResponse:
    def __init__(self, payload=None, status: int = 200):
        self._payload = payload
        self.status_code = status

    def json(self):
        if self._payload is None:
            raise ValueError("no JSON body")
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


class FakeSession:
    def __init__(self, response=None, error: Exception | None = None):
        self.response = response
        self.error = error
        self.requests = []

    def get(self, url, params=None, timeout=None):
        self.requests.append((url, params, timeout))
        if self.error is not None:
            raise self.error
        return self.response


def _source(session: FakeSession) -> NewsApiSource:
    source = NewsApiSource("news-key", "https://news.example.com/v2/", timeout=5.0)
    source.session = session
    return source


ARTICLES = {
    "status": "ok",
    "articles": [
        {
            "title": "Chips get faster",
            "description": "A new process node.",
            "source": {"id": None, "name": "Tech Daily"},
            "url": "https://example.com/chips",
            "publishedAt": "2025-03-01T08:30:00Z",
        },
        {"title": "", "source": {"name": "Nobody"}},
        {"title": "Rust hits 2.0", "source": None, "publishedAt": "not a date"},
    ],
}


class TestNewsApiSource:
    def test_is_a_news_source(self):
        assert isinstance(NewsApiSource("news-key"), NewsSource)

    def test_requires_api_key(self):
        with pytest.raises(ValueError):
            NewsApiSource(" ")

    def test_api_key_header(self):
        assert NewsApiSource("news-key").session.headers["X-Api-Key"] == "news-key"

    def test_requests_first_category(self):
        session = FakeSession(FakeResponse(ARTICLES))
        _source(session).get_headlines(["business", "science"], 3)
        assert session.requests == [(
            "https://news.example.com/v2/top-headlines",
            {"category": "business", "language": "en", "pageSize": 3},
            5.0,
        )]

    def test_defaults_to_technology(self):
        session = FakeSession(FakeResponse(ARTICLES))
        _source(session).get_headlines([], 5)
        assert session.requests[0][1]["category"] == "technology"

    def test_maps_articles(self):
        items = _source(FakeSession(FakeResponse(ARTICLES))).get_headlines(["technology"], 5)

        assert [i.title for i in items] == ["Chips get faster", "Rust hits 2.0"]
        first = items[0]
        assert first.source == "Tech Daily"
        assert first.url == "https://example.com/chips"
        assert first.category == "technology"
        assert first.published_at == datetime(2025, 3, 1, 8, 30, tzinfo=timezone.utc)
        assert items[1].source == ""
        assert items[1].published_at is None

    def test_count_caps_results(self):
        items = _source(FakeSession(FakeResponse(ARTICLES))).get_headlines(["technology"], 1)
        assert len(items) == 1

    def test_timeout_is_mapped(self):
        with pytest.raises(UpstreamTimeout):
            _source(FakeSession(error=requests.Timeout("slow"))).get_headlines(["technology"], 5)

    def test_http_error_is_mapped(self):
        with pytest.raises(UpstreamError):
            _source(FakeSession(FakeResponse({}, status=401))).get_headlines(["technology"], 5)

    @pytest.mark.parametrize(
        "response",
        [FakeResponse(None), FakeResponse({"status": "ok"}), FakeResponse({"articles": "nope"})],
    )
    def test_malformed_answers(self, response):
        with pytest.raises(MalformedResponse):
            _source(FakeSession(response)).get_headlines(["technology"], 5)


def test_article_without_title_is_dropped():
    assert article_to_item({"title": "   "}, "technology") is None
