"""
Knowledge source registry.

This module builds the default set of knowledge sources from settings.
To add a new source:
1. Create a new file in orchestral/sources/ (e.g., github_issues.py)
2. Create a class that inherits from KnowledgeSource
3. Construct it in build_default_sources below
"""

from typing import List, Optional

from slack_sdk.web.async_client import AsyncWebClient

from orchestral.core.config import Settings, settings as default_settings
from orchestral.core.logging import get_logger
from orchestral.sources.base import KnowledgeSource
from orchestral.sources.confluence_pages import ConfluenceClient, ConfluencePagesSource, PageStore
from orchestral.sources.jira_issues import IssueStore, JiraIssuesSource
from orchestral.sources.slack_messages import MessageStore, SlackMessagesSource

logger = get_logger(__name__)


def build_default_sources(settings: Optional[Settings] = None) -> List[KnowledgeSource]:
    """
    Create the Jira, Confluence and Slack sources.

    Stores are seeded from the configured snapshot files; remote clients
    are only created when their credentials are set.
    """
    settings = settings or default_settings

    issue_store = (
        IssueStore.from_snapshot(settings.jira_snapshot_path)
        if settings.jira_snapshot_path
        else IssueStore()
    )
    page_store = (
        PageStore.from_snapshot(settings.confluence_snapshot_path)
        if settings.confluence_snapshot_path
        else PageStore()
    )
    message_store = (
        MessageStore.from_snapshot(settings.slack_snapshot_path)
        if settings.slack_snapshot_path
        else MessageStore()
    )

    confluence_client = None
    if settings.confluence_configured:
        confluence_client = ConfluenceClient(
            base_url=settings.confluence_url,
            email=settings.confluence_email,
            api_token=settings.confluence_api_token,
        )

    slack_client = AsyncWebClient(token=settings.slack_user_token) if settings.slack_user_token else None

    sources: List[KnowledgeSource] = [
        JiraIssuesSource(
            store=issue_store,
            stale_days=settings.jira_stale_days,
            require_estimates=settings.jira_require_estimates,
        ),
        ConfluencePagesSource(store=page_store, client=confluence_client),
        SlackMessagesSource(store=message_store, client=slack_client),
    ]
    logger.info(f"Built {len(sources)} knowledge sources: {[s.id for s in sources]}")
    return sources


__all__ = [
    "KnowledgeSource",
    "JiraIssuesSource",
    "ConfluencePagesSource",
    "SlackMessagesSource",
    "build_default_sources",
]
