"""Google Custom Search client and snippet summarisation for /search."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import List, Optional
from urllib.parse import urlparse

import aiohttp

from ..errors import CollaboratorUnavailable

logger = logging.getLogger(__name__)

GOOGLE_SEARCH_URL = "https://www.googleapis.com/customsearch/v1"

_SENTENCE_SPLIT = re.compile(r"[.!?]+")
_MONTH_PREFIX = re.compile(
    r"^\s*(jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)[a-z]*\s+\d", re.IGNORECASE
)
_NUMBERED_ITEM = re.compile(r"^\s*\d+[)\s]")
HOW_TO_HINTS = ("minecraft", "how to", "tame", "craft", "build")
STEP_HINTS = ("step", "first", "then", "next", "finally")


@dataclass(frozen=True)
class SearchResult:
    title: str
    snippet: str
    url: str


@dataclass(frozen=True)
class SearchSummary:
    answer: str
    additional_info: str = ""
    source: str = ""


def _valid_sentences(snippet: str) -> List[str]:
    sentences = [s for s in _SENTENCE_SPLIT.split(snippet) if s]
    valid = []
    for sentence in sentences:
        lowered = sentence.lower()
        if _MONTH_PREFIX.match(lowered):
            continue
        if "..." in lowered or len(sentence) <= 20:
            continue
        if _NUMBERED_ITEM.match(lowered):
            continue
        valid.append(sentence.strip())
    return valid


def _as_sentences(sentences: List[str], separator: str) -> str:
    return separator.join(f"{sentence}." for sentence in sentences)


def summarize_result(query: str, result: SearchResult) -> SearchSummary:
    """Pick the most useful sentences out of a result snippet.

    How-to style queries prefer instruction-like sentences; everything else
    answers with the first sentence and keeps the next two as extra context.
    """

    sentences = _valid_sentences(result.snippet)
    source = (urlparse(result.url).hostname or "") if result.url else ""

    if not sentences:
        return SearchSummary(answer=result.snippet.strip(), source=source)

    lowered_query = query.lower()
    if any(hint in lowered_query for hint in HOW_TO_HINTS):
        steps = [s for s in sentences if any(hint in s.lower() for hint in STEP_HINTS)]
        answer = _as_sentences(steps or sentences[:3], "\n\n")
        extra = _as_sentences(sentences[3:5], " ") if len(sentences) > 3 else ""
    else:
        answer = _as_sentences(sentences[:1], "")
        extra = _as_sentences(sentences[1:3], " ")
    return SearchSummary(answer=answer, additional_info=extra, source=source)


class SearchClient:
    """Thin wrapper over the Custom Search JSON API."""

    def __init__(
        self,
        api_key: Optional[str],
        cse_id: Optional[str],
        *,
        timeout: float = 15.0,
        max_results: int = 5,
    ):
        self._api_key = api_key
        self._cse_id = cse_id
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._max_results = max_results
        self._session: Optional[aiohttp.ClientSession] = None

    def is_configured(self) -> bool:
        return bool(self._api_key and self._cse_id)

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def search(self, query: str) -> List[SearchResult]:
        if not self.is_configured():
            raise CollaboratorUnavailable("Web search is not configured on this bot.")
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        params = {
            "key": self._api_key,
            "cx": self._cse_id,
            "q": query,
            "num": str(self._max_results),
            "safe": "active",
        }
        try:
            async with self._session.get(GOOGLE_SEARCH_URL, params=params) as response:
                if response.status != 200:
                    logger.warning("Search request failed with HTTP %s", response.status)
                    raise CollaboratorUnavailable("The search service returned an error.")
                data = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise CollaboratorUnavailable("Could not reach the search service.") from exc

        return [
            SearchResult(
                title=item.get("title", ""),
                snippet=item.get("snippet", ""),
                url=item.get("link", ""),
            )
            for item in data.get("items") or []
        ]
