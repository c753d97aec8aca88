"""
Confluence pages knowledge source.

Searches Confluence through its REST API (CQL text search) and falls
back to an in-memory page store when the API is not configured, fails
or finds nothing.
"""

import html
import json
import re
from collections import Counter as TallyCounter
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List, Optional

import httpx

from orchestral.core.exceptions import SourceQueryError
from orchestral.core.logging import get_logger, log_execution_time
from orchestral.models.knowledge import CamelModel, Citation, KnowledgeSourceMetadata, QueryContext
from orchestral.sources.base import HandlerOutput, KnowledgeSource

logger = get_logger(__name__)

SOURCE_ID = "confluence-pages"

SPACE_KEYWORDS = ("space", "in space", "from space")
SUMMARY_KEYWORDS = ("how many", "count", "list all", "overview", "summary")

# "space DOCS", "in DOCS", "DOCS space"
SPACE_KEY_PATTERNS = (
    re.compile(r"(?:space|in|from)\s+([a-z0-9]+)", re.IGNORECASE),
    re.compile(r"([a-z0-9]+)\s+space", re.IGNORECASE),
)
SPACE_LINK_PATTERN = re.compile(r"/wiki/rest/api/space/([^/]+)")
TAG_PATTERN = re.compile(r"<[^>]+>")

NO_PREVIEW = "No content preview"


class ConfluencePage(CamelModel):
    id: str
    space_id: str = ""
    space_key: str = ""
    parent_id: Optional[str] = None
    title: str
    body: Optional[str] = None  # Plain text excerpt
    url: str
    updated_at: Optional[str] = None

    def excerpt(self, length: int) -> str:
        return self.body[:length] if self.body else NO_PREVIEW


def extract_plain_text(markup: Optional[str], max_length: int = 500) -> Optional[str]:
    """Strip storage-format markup down to a plain text excerpt."""
    if not markup:
        return None
    text = html.unescape(TAG_PATTERN.sub(" ", markup))
    text = re.sub(r"\s+", " ", text).strip()
    if len(text) > max_length:
        return text[:max_length] + "..."
    return text


class ConfluenceClient:
    """Minimal Confluence Cloud REST client for page search."""

    def __init__(
        self,
        base_url: str,
        email: str,
        api_token: str,
        space_keys: Optional[List[str]] = None,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.email = email
        self.api_token = api_token
        self.space_keys = space_keys or []
        self.timeout = timeout
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.base_url and self.email and self.api_token)

    def build_cql(self, query: str) -> str:
        escaped = query.replace("\\", "\\\\").replace('"', '\\"')
        cql = f'text ~ "{escaped}"'
        if self.space_keys:
            keys = ",".join(f'"{k}"' for k in self.space_keys)
            cql += f" AND space in ({keys})"
        return cql

    @log_execution_time(operation="confluence_search")
    async def search_pages(self, query: str, limit: int = 50) -> List[ConfluencePage]:
        """Run a CQL text search and map the results to pages."""
        async with httpx.AsyncClient(
            auth=httpx.BasicAuth(self.email, self.api_token),
            timeout=self.timeout,
            transport=self._transport,
        ) as client:
            response = await client.get(
                f"{self.base_url}/wiki/rest/api/content/search",
                params={
                    "cql": self.build_cql(query),
                    "limit": limit,
                    "expand": "body.storage,version",
                },
                headers={"Accept": "application/json"},
            )
            response.raise_for_status()
            payload = response.json()

        pages = []
        for result in payload.get("results", []):
            space_link = (result.get("_expandable") or {}).get("space") or ""
            space_match = SPACE_LINK_PATTERN.search(space_link)
            storage = ((result.get("body") or {}).get("storage") or {}).get("value")
            pages.append(
                ConfluencePage(
                    id=str(result["id"]),
                    space_key=space_match.group(1) if space_match else "",
                    title=result.get("title", ""),
                    body=extract_plain_text(storage),
                    url=f"{self.base_url}/wiki{result.get('_links', {}).get('webui', '')}",
                    updated_at=(result.get("version") or {}).get("when"),
                )
            )
        return pages


class PageStore:
    """Thread-safe in-memory copy of Confluence pages and spaces."""

    def __init__(self, pages: Optional[List[ConfluencePage]] = None, spaces: Optional[List[str]] = None):
        self._pages: List[ConfluencePage] = list(pages or [])
        self._spaces: List[str] = list(spaces or [])
        self._lock = Lock()

    def get_pages(self) -> List[ConfluencePage]:
        with self._lock:
            return list(self._pages)

    def set_pages(self, pages: List[ConfluencePage], spaces: Optional[List[str]] = None) -> None:
        with self._lock:
            self._pages = list(pages)
            if spaces is not None:
                self._spaces = list(spaces)

    def get_spaces(self) -> List[str]:
        """Known space keys; derived from the pages when none were stored."""
        with self._lock:
            if self._spaces:
                return list(self._spaces)
            return sorted({p.space_key for p in self._pages if p.space_key})

    def __len__(self) -> int:
        with self._lock:
            return len(self._pages)

    @classmethod
    def from_snapshot(cls, path: str) -> "PageStore":
        """Load `{"spaces": [...], "pages": [...]}` or a bare page list from JSON."""
        snapshot = Path(path)
        if not snapshot.is_file():
            logger.warning(f"Confluence snapshot not found: {path}")
            return cls()

        try:
            raw = json.loads(snapshot.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to read Confluence snapshot {path}: {e}")
            return cls()

        if isinstance(raw, dict):
            items, spaces = raw.get("pages", []), raw.get("spaces", [])
        else:
            items, spaces = raw, []
        pages = [ConfluencePage.model_validate(item) for item in items]
        space_keys = [s["key"] if isinstance(s, dict) else str(s) for s in spaces]
        logger.info(f"Loaded {len(pages)} Confluence pages from snapshot")
        return cls(pages, space_keys)


class ConfluencePagesSource(KnowledgeSource):
    """Knowledge source over Confluence documentation."""

    _metadata = KnowledgeSourceMetadata(
        id=SOURCE_ID,
        name="Confluence Pages",
        description=(
            "Confluence documentation pages including wikis, guides, and technical docs. "
            "Contains page titles, content excerpts, and hierarchy."
        ),
        capabilities=[
            "Search documentation by keyword",
            "Find pages about specific topics",
            "List pages in a space",
            "Get documentation content",
        ],
        example_queries=[
            "What's in the docs about deployment?",
            "Find documentation on API usage",
            "What pages are in the DOCS space?",
            "Search for onboarding guide",
        ],
        priority=2,
    )

    def __init__(self, store: Optional[PageStore] = None, client: Optional[ConfluenceClient] = None):
        self.store = store or PageStore()
        self.client = client

    @property
    def metadata(self) -> KnowledgeSourceMetadata:
        return self._metadata

    async def _check_available(self) -> bool:
        return bool(self.client and self.client.configured) or len(self.store) > 0

    async def _run_query(self, context: QueryContext) -> HandlerOutput:
        if self.client and self.client.configured:
            try:
                found = await self.client.search_pages(context.query)
            except (httpx.HTTPError, ValueError) as e:
                logger.warning(
                    f"Confluence search failed, using page store: {e}",
                    extra={"error_type": type(e).__name__},
                )
            else:
                if found:
                    return self._format_search_results(found)

        pages = self.store.get_pages()
        if not pages and not self.client:
            raise SourceQueryError(SOURCE_ID, "no Confluence pages loaded")

        query = context.query.lower()
        if any(kw in query for kw in SPACE_KEYWORDS):
            return self._handle_space_query(context.query, pages)
        if any(kw in query for kw in SUMMARY_KEYWORDS):
            return self._handle_summary_query(pages)
        return self._handle_search_query(query, pages)

    # ============ Handlers ============

    def _format_search_results(self, pages: List[ConfluencePage]) -> HandlerOutput:
        return (
            {
                "count": len(pages),
                "pages": [
                    {
                        "id": p.id,
                        "title": p.title,
                        "spaceKey": p.space_key,
                        "excerpt": p.excerpt(200),
                        "url": p.url,
                    }
                    for p in pages
                ],
            },
            [self._citation(p) for p in pages],
        )

    def _handle_space_query(self, query: str, pages: List[ConfluencePage]) -> HandlerOutput:
        known = {p.space_key.upper() for p in pages if p.space_key}
        space_key = None
        for pattern in SPACE_KEY_PATTERNS:
            for candidate in pattern.findall(query):
                if candidate.upper() in known:
                    space_key = candidate.upper()
                    break
            if space_key:
                break

        if space_key:
            space_pages = [p for p in pages if p.space_key.upper() == space_key]
            return (
                {
                    "spaceKey": space_key,
                    "count": len(space_pages),
                    "pages": [
                        {"id": p.id, "title": p.title, "excerpt": p.excerpt(200)}
                        for p in space_pages
                    ],
                },
                [self._citation(p) for p in space_pages],
            )

        grouped: Dict[str, List[ConfluencePage]] = {}
        for page in pages:
            grouped.setdefault(page.space_key or "Unknown", []).append(page)
        return (
            {
                "pagesBySpace": {
                    key: {"count": len(items), "pages": [p.title for p in items[:5]]}
                    for key, items in grouped.items()
                }
            },
            [],
        )

    def _handle_summary_query(self, pages: List[ConfluencePage]) -> HandlerOutput:
        by_space = TallyCounter(p.space_key or "Unknown" for p in pages)
        return (
            {
                "totalSpaces": len(self.store.get_spaces()),
                "totalPages": len(pages),
                "pagesBySpace": dict(by_space),
            },
            [],
        )

    def _handle_search_query(self, query: str, pages: List[ConfluencePage]) -> HandlerOutput:
        terms = [t for t in query.split() if len(t) > 2]
        scored = []
        for page in pages:
            title = page.title.lower()
            body = (page.body or "").lower()
            score = sum(10 for t in terms if t in title) + sum(1 for t in terms if t in body)
            if score > 0:
                scored.append((score, page))

        # Stable sort keeps store order among equal scores
        scored.sort(key=lambda item: item[0], reverse=True)
        top = scored[:10]
        return (
            {
                "count": len(top),
                "pages": [
                    {
                        "id": page.id,
                        "title": page.title,
                        "spaceKey": page.space_key,
                        "excerpt": page.excerpt(200),
                        "relevance": score,
                    }
                    for score, page in top
                ],
            },
            [self._citation(page) for _, page in top],
        )

    def _citation(self, page: ConfluencePage) -> Citation:
        return Citation(
            source_id=SOURCE_ID,
            type="confluence-page",
            id=page.id,
            title=page.title,
            url=page.url,
            snippet=page.excerpt(150),
            metadata={"pageId": page.id, "spaceKey": page.space_key, "title": page.title},
        )
