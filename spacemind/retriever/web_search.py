"""
Web Search

Optional web augmentation through the Google Custom Search JSON API.
Every failure degrades to an empty result list; search never raises.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger("spacemind.retriever.web_search")

CUSTOM_SEARCH_URL = "https://www.googleapis.com/customsearch/v1"


class WebSearchClient:
    """Async Google Custom Search client."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        cx: Optional[str] = None,
        num_results: int = 5,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize web search client.

        Args:
            api_key: Google API key with Custom Search enabled
            cx: Programmable search engine id
            num_results: Results per query (API maximum is 10)
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.api_key = api_key
        self.cx = cx
        self.num_results = max(1, min(num_results, 10))
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_config(cls, search_config) -> "WebSearchClient":
        return cls(
            api_key=search_config.api_key or None,
            cx=search_config.cx or None,
            num_results=search_config.num_results,
            timeout=search_config.timeout,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.cx)

    async def search(self, query: str) -> List[str]:
        """
        Search the web for a query.

        Returns:
            One "title - snippet (link)" line per result; [] on any failure
        """
        if not self.is_configured:
            logger.info("Web search requested but GOOGLE_SEARCH_API_KEY/GOOGLE_SEARCH_CX not set")
            return []

        params = {"key": self.api_key, "cx": self.cx, "q": query, "num": self.num_results}
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
            ) as client:
                response = await client.get(CUSTOM_SEARCH_URL, params=params)
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Web search failed for %r: %s", query, e)
            return []

        return self._parse_items(data)

    def _parse_items(self, data: Any) -> List[str]:
        if not isinstance(data, dict):
            return []
        items = data.get("items") or []
        results = []
        for item in items:
            if not isinstance(item, dict):
                continue
            results.append(self._format_item(item))
        return results[:self.num_results]

    @staticmethod
    def _format_item(item: Dict[str, Any]) -> str:
        title = (item.get("title") or "").strip()
        snippet = " ".join((item.get("snippet") or "").split())
        link = item.get("link") or ""
        text = f"{title} - {snippet}" if snippet else title
        return f"{text} ({link})" if link else text
