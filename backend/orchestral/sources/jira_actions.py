"""
Action-required detection for Jira issues.

Flags the issues a project manager should look at: blocked work and
what blocks it, in-progress work that stopped moving, unassigned work
and stories without an estimate.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import Field

from orchestral.models.knowledge import CamelModel

IssueType = Literal["initiative", "epic", "story", "task", "bug"]
StatusCategory = Literal["todo", "inprogress", "done"]


class JiraIssue(CamelModel):
    """A Jira issue as held in the issue store."""

    key: str
    summary: str
    type: IssueType
    status: str
    status_category: StatusCategory
    assignee: Optional[str] = None
    parent_key: Optional[str] = None
    estimate: Optional[float] = None
    created: datetime
    updated: datetime
    labels: List[str] = Field(default_factory=list)
    blocked: bool = False

    # Key or summary of the blocking issue, or free text
    blocked_reason: Optional[str] = None
    url: str

    @property
    def is_done(self) -> bool:
        return self.status_category == "done"

    @property
    def ref(self) -> str:
        return f"[{self.key}] {self.summary}"


@dataclass
class ActionItem:
    issue: JiraIssue
    reason: str


@dataclass
class ActionRequiredResult:
    blockers: List[ActionItem] = field(default_factory=list)
    blocked: List[ActionItem] = field(default_factory=list)
    stale: List[ActionItem] = field(default_factory=list)
    unassigned: List[ActionItem] = field(default_factory=list)
    unestimated: List[ActionItem] = field(default_factory=list)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def detect_action_required(
    issues: List[JiraIssue],
    stale_days: int = 5,
    require_estimates: bool = True,
    now: Optional[datetime] = None,
) -> ActionRequiredResult:
    """
    Classify issues that need attention.

    Args:
        issues: All issues of the project
        stale_days: In-progress issues not updated for longer are stale
        require_estimates: Flag stories without story points
        now: Reference time (defaults to the current UTC time)

    Returns:
        ActionRequiredResult with one list per category
    """
    result = ActionRequiredResult()
    by_key = {issue.key: issue for issue in issues}
    by_summary = {issue.summary: issue for issue in issues}
    now = _as_utc(now or datetime.now(timezone.utc))

    for issue in issues:
        if issue.blocked:
            blocker = None
            if issue.blocked_reason:
                blocker = by_key.get(issue.blocked_reason) or by_summary.get(issue.blocked_reason)

            if blocker:
                reason = f"Blocked by {blocker.ref}"
            elif issue.blocked_reason:
                reason = f"Blocked by {issue.blocked_reason}"
            else:
                reason = "Marked as blocked"
            result.blocked.append(ActionItem(issue=issue, reason=reason))

            if blocker and not blocker.is_done:
                existing = next((b for b in result.blockers if b.issue.key == blocker.key), None)
                if existing is None:
                    result.blockers.append(ActionItem(issue=blocker, reason=f"Blocks {issue.ref}"))
                elif issue.key not in existing.reason:
                    existing.reason += f", {issue.ref}"

        if issue.status_category == "inprogress":
            age = now - _as_utc(issue.updated)
            if age.total_seconds() > stale_days * 86400:
                result.stale.append(
                    ActionItem(issue=issue, reason=f"No updates for {age.days} days")
                )

        if not issue.is_done and not issue.assignee:
            result.unassigned.append(ActionItem(issue=issue, reason="No assignee"))

        if require_estimates and issue.type == "story" and issue.estimate is None:
            result.unestimated.append(ActionItem(issue=issue, reason="Missing story points"))

    return result
