"""
NewsAPI-compatible headlines collaborator.

``GET {base}/top-headlines`` for the first preferred category, English only.
Articles without a title are dropped. Transport and HTTP errors raise
:class:`UpstreamError`; an answer that is not an article list raises
:class:`MalformedResponse`.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..infra.exceptions import MalformedResponse, UpstreamError, UpstreamTimeout
from ..infra.logging import get_logger
from ..runtime.segment_types import NewsItem, parse_timestamp

logger = get_logger(__name__)

DEFAULT_CATEGORY = "technology"


def _create_session(api_key: str) -> requests.Session:
    """Create a requests session with retry logic and the API key header."""
    session = requests.Session()

    retry_strategy = Retry(
        total=3,
        backoff_factor=1,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods=["GET"],
    )
    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("http://", adapter)
    session.mount("https://", adapter)

    session.headers.update({"X-Api-Key": api_key})
    return session


def article_to_item(article: dict[str, Any], category: str) -> NewsItem | None:
    title = (article.get("title") or "").strip()
    if not title:
        return None
    source = article.get("source") or {}
    published = article.get("publishedAt")
    try:
        published_at = parse_timestamp(published) if published else None
    except ValueError:
        published_at = None
    return NewsItem(
        title=title,
        description=str(article.get("description") or ""),
        source=str(source.get("name") or "") if isinstance(source, dict) else "",
        url=str(article.get("url") or ""),
        category=category,
        published_at=published_at,
    )


class NewsApiSource:
    """:class:`NewsSource` backed by a NewsAPI-style ``top-headlines`` endpoint."""

    def __init__(self, api_key: str, base_url: str = "https://newsapi.org/v2", timeout: float = 20.0):
        if not api_key.strip():
            raise ValueError("api_key cannot be empty")
        self.base_url = base_url.strip().rstrip("/")
        self.timeout = timeout
        self.session = _create_session(api_key.strip())

    def get_headlines(self, categories: Sequence[str], count: int) -> list[NewsItem]:
        category = categories[0] if categories else DEFAULT_CATEGORY
        params = {"category": category, "language": "en", "pageSize": count}
        url = f"{self.base_url}/top-headlines"
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
        except requests.Timeout as e:
            raise UpstreamTimeout(f"GET top-headlines timed out after {self.timeout}s") from e
        except requests.RequestException as e:
            raise UpstreamError(f"GET top-headlines failed: {e}") from e

        try:
            articles = response.json()["articles"]
        except (ValueError, KeyError, TypeError) as e:
            raise MalformedResponse(f"Unreadable headlines answer: {e}") from e
        if not isinstance(articles, list):
            raise MalformedResponse("Headlines answer has no article list")

        items = [
            item
            for item in (article_to_item(a, category) for a in articles if isinstance(a, dict))
            if item is not None
        ]
        logger.debug("headlines_fetched", category=category, count=len(items))
        return items[:count]
