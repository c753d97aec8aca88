"""
Jira issues knowledge source.

Answers questions about the project's Jira issues from an in-memory
issue store: blocked and stale work, issues by type, status or
assignee, and counts.
"""

import json
import re
from collections import Counter as TallyCounter
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Iterable, List, Optional

from orchestral.core.logging import get_logger
from orchestral.models.knowledge import Citation, KnowledgeSourceMetadata, QueryContext
from orchestral.sources.base import HandlerOutput, KnowledgeSource
from orchestral.sources.jira_actions import JiraIssue, detect_action_required

logger = get_logger(__name__)


ACTION_KEYWORDS = (
    "blocked",
    "blocker",
    "stale",
    "unassigned",
    "attention",
    "action",
    "needs",
    "problem",
    "issue",
    "stuck",
    "unestimated",
)
TYPE_KEYWORDS = ("epic", "story", "stories", "task", "bug", "initiative")
STATUS_KEYWORDS = ("in progress", "todo", "done", "completed", "open", "closed")
ASSIGNEE_KEYWORDS = ("assigned to", "working on", "who is", "assignee")
SUMMARY_KEYWORDS = ("how many", "count", "summary", "overview", "statistics", "stats")

ASSIGNEE_PATTERN = re.compile(r"(?:assigned to|working on|assignee)\s+(\w+)", re.IGNORECASE)


def _mentions(query: str, keywords: Iterable[str]) -> bool:
    return any(kw in query for kw in keywords)


class IssueStore:
    """Thread-safe in-memory snapshot of the project's Jira issues."""

    def __init__(self, issues: Optional[List[JiraIssue]] = None):
        self._issues: List[JiraIssue] = list(issues or [])
        self._lock = Lock()

    def get_issues(self) -> List[JiraIssue]:
        with self._lock:
            return list(self._issues)

    def set_issues(self, issues: List[JiraIssue]) -> None:
        with self._lock:
            self._issues = list(issues)

    def __len__(self) -> int:
        with self._lock:
            return len(self._issues)

    @classmethod
    def from_snapshot(cls, path: str) -> "IssueStore":
        """
        Load issues from a JSON file.

        Accepts either a list of issues or an object with an `issues` list.
        A missing or unreadable file yields an empty store.
        """
        snapshot = Path(path)
        if not snapshot.is_file():
            logger.warning(f"Jira snapshot not found: {path}")
            return cls()

        try:
            raw = json.loads(snapshot.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to read Jira snapshot {path}: {e}")
            return cls()

        items = raw.get("issues", []) if isinstance(raw, dict) else raw
        issues = [JiraIssue.model_validate(item) for item in items]
        logger.info(f"Loaded {len(issues)} Jira issues from snapshot")
        return cls(issues)


class JiraIssuesSource(KnowledgeSource):
    """Knowledge source over the issue store."""

    _metadata = KnowledgeSourceMetadata(
        id="jira-issues",
        name="Jira Issues",
        description=(
            "Current Jira issues for the project including epics, stories, tasks, and bugs. "
            "Contains status, assignee, estimates, blocked status, and hierarchy information."
        ),
        capabilities=[
            "List all issues by type or status",
            "Find blocked issues and blockers",
            "Find stale issues (in progress but not updated)",
            "Find unassigned issues",
            "Find unestimated stories",
            "Search issues by assignee",
            "Show issue hierarchy (initiatives → epics → stories)",
            "Get issue counts by status category",
        ],
        example_queries=[
            "What issues are blocked?",
            "Which stories are unassigned?",
            "Show me all epics",
            "What is John working on?",
            "How many issues are in progress?",
            "What needs attention?",
        ],
        priority=1,
    )

    def __init__(
        self,
        store: Optional[IssueStore] = None,
        stale_days: int = 5,
        require_estimates: bool = True,
    ):
        self.store = store or IssueStore()
        self.stale_days = stale_days
        self.require_estimates = require_estimates

    @property
    def metadata(self) -> KnowledgeSourceMetadata:
        return self._metadata

    async def _run_query(self, context: QueryContext) -> HandlerOutput:
        issues = self.store.get_issues()
        query = context.query.lower()

        if _mentions(query, ACTION_KEYWORDS):
            return self._handle_action_query(query, issues)
        if _mentions(query, TYPE_KEYWORDS):
            return self._handle_type_query(query, issues)
        if _mentions(query, STATUS_KEYWORDS):
            return self._handle_status_query(query, issues)
        if _mentions(query, ASSIGNEE_KEYWORDS):
            return self._handle_assignee_query(query, issues)
        if _mentions(query, SUMMARY_KEYWORDS):
            return self._handle_summary_query(issues)
        return self._handle_general_query(issues)

    # ============ Handlers ============

    def _handle_action_query(self, query: str, issues: List[JiraIssue]) -> HandlerOutput:
        actions = detect_action_required(issues, self.stale_days, self.require_estimates)
        attention = "attention" in query
        data: Dict[str, Any] = {}
        citations: List[Citation] = []

        # Category -> (included?, detected items, extra payload field)
        categories = [
            ("blockers", "blocker" in query or attention, actions.blockers, "reason"),
            ("blocked", "blocked" in query or attention, actions.blocked, "reason"),
            ("stale", "stale" in query or "stuck" in query or attention, actions.stale, "reason"),
            ("unassigned", "unassigned" in query or attention, actions.unassigned, "type"),
            ("unestimated", "unestimated" in query or attention, actions.unestimated, None),
        ]

        for name, included, items, extra in categories:
            if not included or not items:
                continue
            entries = []
            for action in items:
                entry = {"key": action.issue.key, "summary": action.issue.summary}
                if extra == "reason":
                    entry["reason"] = action.reason
                elif extra == "type":
                    entry["type"] = action.issue.type
                entries.append(entry)
                citations.append(self._citation(action.issue, action.reason))
            data[name] = entries

        return data, self.dedupe_citations(citations)

    def _handle_type_query(self, query: str, issues: List[JiraIssue]) -> HandlerOutput:
        types = []
        if "epic" in query:
            types.append("epic")
        if "story" in query or "stories" in query:
            types.append("story")
        if "task" in query:
            types.append("task")
        if "bug" in query:
            types.append("bug")
        if "initiative" in query:
            types.append("initiative")

        filtered = [i for i in issues if i.type in types]
        return (
            {
                "types": types,
                "count": len(filtered),
                "issues": [self._brief(i, assignee=True) for i in filtered],
            },
            [self._citation(i) for i in filtered],
        )

    def _handle_status_query(self, query: str, issues: List[JiraIssue]) -> HandlerOutput:
        category = None
        if "in progress" in query:
            category = "inprogress"
        elif "todo" in query or "open" in query:
            category = "todo"
        elif "done" in query or "completed" in query:
            category = "done"

        filtered = [i for i in issues if i.status_category == category] if category else issues
        return (
            {
                "statusCategory": category,
                "count": len(filtered),
                "issues": [self._brief(i, assignee=True) for i in filtered],
            },
            [self._citation(i) for i in filtered],
        )

    def _handle_assignee_query(self, query: str, issues: List[JiraIssue]) -> HandlerOutput:
        match = ASSIGNEE_PATTERN.search(query)
        open_issues = [i for i in issues if not i.is_done]

        if not match:
            grouped: Dict[str, List[Dict[str, Any]]] = {}
            for issue in open_issues:
                grouped.setdefault(issue.assignee or "Unassigned", []).append(
                    {"key": issue.key, "summary": issue.summary, "status": issue.status}
                )
            return {"issuesByAssignee": grouped}, [self._citation(i) for i in open_issues]

        name = match.group(1).lower()
        filtered = [i for i in open_issues if i.assignee and name in i.assignee.lower()]
        return (
            {
                "assignee": name,
                "count": len(filtered),
                "issues": [self._brief(i) for i in filtered],
            },
            [self._citation(i) for i in filtered],
        )

    def _handle_summary_query(self, issues: List[JiraIssue]) -> HandlerOutput:
        by_category = TallyCounter(i.status_category for i in issues)
        by_type = TallyCounter(i.type for i in issues)
        return (
            {
                "total": len(issues),
                "byStatus": {
                    "todo": by_category["todo"],
                    "inProgress": by_category["inprogress"],
                    "done": by_category["done"],
                },
                "byType": {
                    "initiatives": by_type["initiative"],
                    "epics": by_type["epic"],
                    "stories": by_type["story"],
                    "tasks": by_type["task"],
                    "bugs": by_type["bug"],
                },
            },
            [],
        )

    def _handle_general_query(self, issues: List[JiraIssue]) -> HandlerOutput:
        in_progress = [i for i in issues if i.status_category == "inprogress"]
        blocked = [i for i in issues if i.blocked]
        citations = [self._citation(i) for i in (in_progress + blocked)[:10]]
        return (
            {
                "summary": {
                    "total": len(issues),
                    "inProgress": len(in_progress),
                    "blocked": len(blocked),
                },
                "recentInProgress": [
                    {"key": i.key, "summary": i.summary, "assignee": i.assignee}
                    for i in in_progress[:5]
                ],
            },
            self.dedupe_citations(citations),
        )

    # ============ Helpers ============

    @staticmethod
    def _brief(issue: JiraIssue, assignee: bool = False) -> Dict[str, Any]:
        brief = {"key": issue.key, "summary": issue.summary, "status": issue.status}
        if assignee:
            brief["assignee"] = issue.assignee
        brief["type"] = issue.type
        return brief

    def _citation(self, issue: JiraIssue, snippet: Optional[str] = None) -> Citation:
        return Citation(
            source_id=self.id,
            type="jira-issue",
            id=issue.key,
            title=issue.ref,
            url=issue.url,
            snippet=snippet or f"{issue.type} - {issue.status}",
            metadata={"item": issue.to_wire()},
        )
