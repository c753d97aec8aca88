"""
Slack messages knowledge source.

Channel and user questions are answered from an in-memory message
store; everything else goes to Slack's `search.messages` API (which
needs a user token) with the store as fallback.
"""

import asyncio
import json
import re
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List, Optional

import aiohttp
from slack_sdk.errors import SlackApiError
from slack_sdk.web.async_client import AsyncWebClient

from orchestral.core.logging import get_logger, log_execution_time
from orchestral.models.knowledge import CamelModel, Citation, KnowledgeSourceMetadata, QueryContext
from orchestral.sources.base import HandlerOutput, KnowledgeSource

logger = get_logger(__name__)

SOURCE_ID = "slack-messages"
MAX_RESULTS = 20

CHANNEL_PATTERN = re.compile(r"#(\w+)")
USER_KEYWORD_PATTERN = re.compile(r"\b(?:said|from|by|posted by|user's|their)\b")
USER_NAME_PATTERN = re.compile(r"(?:said|from|by|posted by)\s+(\w+)", re.IGNORECASE)

# Words that describe the request rather than the content being searched
FILLER_WORDS = {
    "messages", "message", "posts", "show", "list", "recent", "latest", "what",
    "was", "were", "discussed", "about", "the", "any", "all", "find",
}

# Slack markup: user mentions, channel links, labelled links, bare links
MARKUP_RULES = (
    (re.compile(r"<@[A-Z0-9]+>"), "@user"),
    (re.compile(r"<#[A-Z0-9]+\|([^>]+)>"), r"#\1"),
    (re.compile(r"<([^|>]+)\|([^>]+)>"), r"\2"),
    (re.compile(r"<([^>]+)>"), r"\1"),
)


def clean_slack_text(text: str, max_length: int) -> str:
    """Replace Slack markup with readable text and truncate."""
    cleaned = text
    for pattern, replacement in MARKUP_RULES:
        cleaned = pattern.sub(replacement, cleaned)
    cleaned = cleaned.replace("\n", " ").strip()
    return KnowledgeSource.truncate(cleaned, max_length)


class SlackMessage(CamelModel):
    ts: str
    channel_id: str
    channel_name: str
    user_id: str = ""
    user_name: str = ""
    text: str = ""
    permalink: Optional[str] = None
    thread_ts: Optional[str] = None
    reply_count: int = 0
    created_at: datetime


class MessageStore:
    """Thread-safe in-memory copy of Slack channels and their messages."""

    def __init__(self):
        self._channels: Dict[str, str] = {}  # channel id -> name
        self._messages: Dict[str, List[SlackMessage]] = {}
        self._lock = Lock()

    def set_channel(self, channel_id: str, name: str, messages: List[SlackMessage]) -> None:
        with self._lock:
            self._channels[channel_id] = name
            self._messages[channel_id] = list(messages)

    def get_channel_id(self, name: str) -> Optional[str]:
        with self._lock:
            for channel_id, channel_name in self._channels.items():
                if channel_name.lower() == name.lower():
                    return channel_id
        return None

    def get_messages(self, channel_id: str) -> List[SlackMessage]:
        with self._lock:
            return list(self._messages.get(channel_id, []))

    def get_all_messages(self) -> List[SlackMessage]:
        with self._lock:
            return [m for messages in self._messages.values() for m in messages]

    def search_cached(self, query: str) -> List[SlackMessage]:
        needle = query.lower()
        return [m for m in self.get_all_messages() if needle in m.text.lower()]

    def __len__(self) -> int:
        with self._lock:
            return sum(len(messages) for messages in self._messages.values())

    @classmethod
    def from_snapshot(cls, path: str) -> "MessageStore":
        """Load `{"channels": [{"id", "name", "messages": [...]}]}` from JSON."""
        store = cls()
        snapshot = Path(path)
        if not snapshot.is_file():
            logger.warning(f"Slack snapshot not found: {path}")
            return store

        try:
            raw = json.loads(snapshot.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to read Slack snapshot {path}: {e}")
            return store

        for channel in raw.get("channels", []):
            messages = [
                SlackMessage.model_validate(
                    {"channelId": channel["id"], "channelName": channel["name"], **m}
                )
                for m in channel.get("messages", [])
            ]
            store.set_channel(channel["id"], channel["name"], messages)
        logger.info(f"Loaded {len(store)} Slack messages from snapshot")
        return store


class SlackMessagesSource(KnowledgeSource):
    """Knowledge source over Slack team discussions."""

    _metadata = KnowledgeSourceMetadata(
        id=SOURCE_ID,
        name="Slack Messages",
        description=(
            "Team discussions from Slack channels. "
            "Contains messages, threads, mentions, and reactions."
        ),
        capabilities=[
            "Search messages by keyword",
            "Find discussions about specific topics",
            "Find messages in a specific channel",
            "Find recent messages from a user",
            "Get channel activity overview",
        ],
        example_queries=[
            "What was discussed about the API?",
            "Messages in #engineering",
            "What did John say about the release?",
            "Recent discussions about deployment",
            "Find slack conversations about the bug",
        ],
        priority=3,
    )

    def __init__(self, store: Optional[MessageStore] = None, client: Optional[AsyncWebClient] = None):
        self.store = store or MessageStore()
        self.client = client
        self._user_names: Dict[str, str] = {}

    @property
    def metadata(self) -> KnowledgeSourceMetadata:
        return self._metadata

    async def _check_available(self) -> bool:
        return self.client is not None or len(self.store) > 0

    async def _run_query(self, context: QueryContext) -> HandlerOutput:
        query = context.query.lower()

        channel_match = CHANNEL_PATTERN.search(query)
        if channel_match:
            return await self._handle_channel_query(channel_match.group(1), query)
        if USER_KEYWORD_PATTERN.search(query):
            return await self._handle_user_query(query)
        return await self._handle_search_query(query)

    # ============ Handlers ============

    async def _handle_channel_query(self, channel_name: str, query: str) -> HandlerOutput:
        channel_id = self.store.get_channel_id(channel_name)
        if channel_id is None:
            return await self._handle_search_query(f"in:#{channel_name} {query}")

        terms = [
            t for t in CHANNEL_PATTERN.sub("", query).split()
            if len(t) > 2 and t not in FILLER_WORDS
        ]
        messages = self.store.get_messages(channel_id)
        if terms:
            messages = [m for m in messages if any(t in m.text.lower() for t in terms)]

        results = messages[:MAX_RESULTS]
        return (
            {
                "channel": channel_name,
                "count": len(results),
                "messages": [
                    {
                        "author": m.user_name,
                        "text": clean_slack_text(m.text, 200),
                        "timestamp": m.created_at.isoformat(),
                        "permalink": m.permalink,
                        "replyCount": m.reply_count,
                    }
                    for m in results
                ],
            },
            [self._citation(m) for m in results],
        )

    async def _handle_user_query(self, query: str) -> HandlerOutput:
        match = USER_NAME_PATTERN.search(query)
        if not match:
            return await self._handle_search_query(query)

        user_name = match.group(1).lower()
        messages = [m for m in self.store.get_all_messages() if user_name in m.user_name.lower()]
        messages.sort(key=lambda m: m.created_at, reverse=True)

        results = messages[:MAX_RESULTS]
        return (
            {
                "user": user_name,
                "count": len(results),
                "messages": [
                    {
                        "channel": m.channel_name,
                        "text": clean_slack_text(m.text, 200),
                        "timestamp": m.created_at.isoformat(),
                        "permalink": m.permalink,
                    }
                    for m in results
                ],
            },
            [self._citation(m) for m in results],
        )

    async def _handle_search_query(self, query: str) -> HandlerOutput:
        messages: List[SlackMessage] = []
        if self.client is not None:
            try:
                messages = await self._search_api(query)
            except (SlackApiError, aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.warning(
                    f"Slack search failed, using message store: {e}",
                    extra={"error_type": type(e).__name__},
                )
                messages = self.store.search_cached(query)[:MAX_RESULTS]
        else:
            messages = self.store.search_cached(query)[:MAX_RESULTS]

        return (
            {
                "query": query,
                "count": len(messages),
                "messages": [
                    {
                        "channel": m.channel_name,
                        "author": m.user_name,
                        "text": clean_slack_text(m.text, 200),
                        "timestamp": m.created_at.isoformat(),
                        "permalink": m.permalink,
                        "replyCount": m.reply_count,
                    }
                    for m in messages
                ],
            },
            [self._citation(m) for m in messages],
        )

    # ============ Slack API ============

    @log_execution_time(operation="slack_search")
    async def _search_api(self, query: str) -> List[SlackMessage]:
        response = await self.client.search_messages(query=query, count=MAX_RESULTS, sort="timestamp")
        matches = (response.get("messages") or {}).get("matches") or []

        messages = []
        for match in matches:
            user_id = match.get("user") or ""
            channel = match.get("channel") or {}
            messages.append(
                SlackMessage(
                    ts=match["ts"],
                    channel_id=channel.get("id", ""),
                    channel_name=channel.get("name", ""),
                    user_id=user_id,
                    user_name=await self._user_name(user_id) or match.get("username") or user_id,
                    text=match.get("text", ""),
                    permalink=match.get("permalink"),
                    thread_ts=match.get("thread_ts"),
                    created_at=datetime.fromtimestamp(float(match["ts"]), tz=timezone.utc),
                )
            )
        return messages[:MAX_RESULTS]

    async def _user_name(self, user_id: str) -> Optional[str]:
        """Resolve a user id to a display name, caching lookups."""
        if not user_id:
            return None
        if user_id in self._user_names:
            return self._user_names[user_id]
        try:
            response = await self.client.users_info(user=user_id)
        except SlackApiError:
            return None
        user: Dict[str, Any] = response.get("user") or {}
        profile = user.get("profile") or {}
        name = user.get("real_name") or profile.get("display_name") or user.get("name")
        if name:
            self._user_names[user_id] = name
        return name

    def _citation(self, message: SlackMessage) -> Citation:
        return Citation(
            source_id=SOURCE_ID,
            type="custom",
            id=f"slack-{message.channel_id}-{message.ts}",
            title=f"Message in #{message.channel_name}",
            url=message.permalink,
            snippet=f"{message.user_name}: {clean_slack_text(message.text, 100)}",
            metadata={
                "messageTs": message.ts,
                "channelId": message.channel_id,
                "channelName": message.channel_name,
                "authorName": message.user_name,
            },
        )
