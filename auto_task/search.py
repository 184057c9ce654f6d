"""Web lookup used by the `search` action."""

from dataclasses import dataclass
from typing import List, Optional

import requests
from bs4 import BeautifulSoup

DUCKDUCKGO_LITE_URL = "https://lite.duckduckgo.com/lite/"
USER_AGENT = "auto-task"


@dataclass
class SearchResult:
    title: str
    description: str
    url: str = ""


def parse_results(html: str, limit: int) -> List[SearchResult]:
    """Pull title/summary pairs out of a DuckDuckGo lite result page."""
    soup = BeautifulSoup(html, "html.parser")
    results: List[SearchResult] = []
    for link in soup.select("a.result-link"):
        if len(results) >= limit:
            break

        row = link.find_parent("tr")
        snippet = None
        # The summary sits in the first result-snippet cell after the title row.
        for sibling in row.find_next_siblings("tr") if row else []:
            if sibling.select_one("a.result-link"):
                break
            snippet = sibling.select_one("td.result-snippet")
            if snippet:
                break

        results.append(SearchResult(
            title=link.get_text(strip=True),
            description=snippet.get_text(" ", strip=True) if snippet else "",
            url=str(link.get("href", "")),
        ))
    return results


class DuckDuckGoSearcher:
    """Posts a query to DuckDuckGo lite and scrapes the first few results."""

    def __init__(
            self,
            limit: int = 3,
            timeout: Optional[float] = 30.0,
            session: Optional[requests.Session] = None,
    ) -> None:
        self.limit = limit
        self.timeout = timeout
        self.session = session or requests.Session()

    def search(self, query: str) -> List[SearchResult]:
        resp = self.session.post(
            DUCKDUCKGO_LITE_URL,
            data={"q": query, "kl": "", "df": ""},
            headers={
                "Origin": "https://lite.duckduckgo.com",
                "User-Agent": USER_AGENT,
            },
            timeout=self.timeout,
        )
        resp.raise_for_status()
        return parse_results(resp.text, self.limit)


def format_results(results: List[SearchResult]) -> str:
    return "\n".join(f"{i}. {r.title}: {r.description}" for i, r in enumerate(results, start=1))
