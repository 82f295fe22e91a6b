"""GitHub API client using PyGitHub."""

import logging
import os
import time
from collections.abc import Iterable
from datetime import UTC, datetime

from github import Github
from github.GithubException import UnknownObjectException
from github.Issue import Issue
from github.PullRequest import PullRequest
from github.PullRequestReview import PullRequestReview
from github.Repository import Repository

from ..models import CIStatus, GitHubItem, ItemType, MergeStatus, ReviewStatus
from .search import parse_repo_id

logger = logging.getLogger(__name__)

# Review states that express a verdict; COMMENTED and PENDING do not
VERDICT_REVIEW_STATES = {"APPROVED", "CHANGES_REQUESTED", "DISMISSED"}


def map_merge_status(pull: PullRequest) -> MergeStatus:
    """Map a PyGitHub pull request onto the closed merge status set."""
    if pull.merged:
        return MergeStatus.MERGED
    if pull.state == "closed":
        return MergeStatus.CLOSED
    if pull.mergeable_state == "dirty" or pull.mergeable is False:
        return MergeStatus.CONFLICT
    # mergeable is None while GitHub is still computing it
    return MergeStatus.OPEN


def map_review_status(
    reviews: Iterable[PullRequestReview],
) -> tuple[ReviewStatus, datetime | None]:
    """Reduce a review list to the aggregate status and the last verdict time.

    Only each reviewer's latest verdict counts.
    """
    latest: dict[str, PullRequestReview] = {}
    for review in reviews:
        if review.state not in VERDICT_REVIEW_STATES:
            continue
        login = review.user.login if review.user else "ghost"
        current = latest.get(login)
        if current is None or (
            review.submitted_at is not None
            and (current.submitted_at is None or review.submitted_at > current.submitted_at)
        ):
            latest[login] = review

    states = {review.state for review in latest.values()}
    submitted = [r.submitted_at for r in latest.values() if r.submitted_at is not None]
    last_reviewed_at = max(submitted) if submitted else None

    if "CHANGES_REQUESTED" in states:
        return ReviewStatus.CHANGES_REQUESTED, last_reviewed_at
    if "APPROVED" in states:
        return ReviewStatus.APPROVED, last_reviewed_at
    return ReviewStatus.PENDING, last_reviewed_at


def map_ci_status(state: str | None, total_count: int | None = None) -> CIStatus:
    """Map a combined commit status string onto the closed CI status set."""
    if total_count == 0:
        # GitHub reports "pending" when no status was ever posted
        return CIStatus.UNKNOWN
    mapping = {
        "success": CIStatus.SUCCESS,
        "failure": CIStatus.FAILURE,
        "error": CIStatus.FAILURE,
        "pending": CIStatus.PENDING,
    }
    return mapping.get((state or "").lower(), CIStatus.UNKNOWN)


class GitHubClient:
    """GitHub API client with rate limiting and authentication."""

    def __init__(self, token: str | None = None):
        """Initialize GitHub client with authentication.

        Args:
            token: GitHub personal access token. If None, reads from
                GITHUB_TOKEN env var.
        """
        self.token = token or os.getenv("GITHUB_TOKEN")
        if not self.token:
            raise ValueError(
                "GitHub token is required. Set GITHUB_TOKEN environment variable."
            )

        self.github = Github(self.token)

    def check_rate_limit(self, max_sleep: float | None = None) -> None:
        """Sleep until the rate limit resets when few requests remain.

        Args:
            max_sleep: Upper bound on the sleep, so callers with a deadline
                are never parked past it.
        """
        remaining, _limit = self.github.rate_limiting
        logger.debug("GitHub API rate limit: %s requests remaining", remaining)

        if remaining < 10:
            sleep_time = self.github.rate_limiting_resettime - time.time() + 1
            if max_sleep is not None:
                sleep_time = min(sleep_time, max_sleep)
            if sleep_time > 0:
                logger.warning(
                    "Rate limit low, sleeping for %.1f seconds...", sleep_time
                )
                time.sleep(sleep_time)

    def get_repository(self, repo_id: str) -> Repository:
        """Get repository object."""
        owner, name = parse_repo_id(repo_id)
        try:
            return self.github.get_repo(f"{owner}/{name}")
        except UnknownObjectException:
            raise ValueError(f"Repository {repo_id} not found")

    def get_activity_page(
        self, repo_id: str, since: datetime, page: int
    ) -> list[Issue]:
        """Fetch one page of issues and pull requests updated since ``since``."""
        repository = self.get_repository(repo_id)
        paginated = repository.get_issues(
            state="all", since=since, sort="updated", direction="desc"
        )
        return list(paginated.get_page(page))

    def search_activity_page(self, query: str, page: int) -> list[Issue]:
        """Fetch one page of organization-wide search results."""
        paginated = self.github.search_issues(query, sort="updated", order="desc")
        return list(paginated.get_page(page))

    def convert_issue(self, github_issue: Issue) -> GitHubItem:
        """Convert a PyGitHub issue (or pull request shell) to a GitHubItem."""
        user = github_issue.user
        author = user.login if user else "ghost"
        author_is_bot = bool(
            user and (getattr(user, "type", None) == "Bot" or author.endswith("[bot]"))
        )

        repository = None
        if getattr(github_issue, "repository", None) is not None:
            repository = github_issue.repository.full_name

        fields = {
            "external_id": str(github_issue.id),
            "provider": "github",
            "title": github_issue.title,
            "description": github_issue.body or "",
            "url": github_issue.html_url,
            "author": author,
            "author_is_bot": author_is_bot,
            "assignees": frozenset(a.login for a in github_issue.assignees),
            "labels": frozenset(label.name for label in github_issue.labels),
            "created_at": github_issue.created_at,
            "updated_at": github_issue.updated_at,
            "repository": repository,
            "number": github_issue.number,
            "state": github_issue.state,
            "closed_at": github_issue.closed_at,
        }

        if github_issue.pull_request is None:
            return GitHubItem(type=ItemType.ISSUE, **fields)

        pull = github_issue.as_pull_request()
        review_status, last_reviewed_at = map_review_status(pull.get_reviews())
        head_commit = pull.base.repo.get_commit(pull.head.sha)
        combined = head_commit.get_combined_status()
        return GitHubItem(
            type=ItemType.PR,
            is_draft=bool(pull.draft),
            merge_status=map_merge_status(pull),
            review_status=review_status,
            ci_status=map_ci_status(combined.state, combined.total_count),
            last_reviewed_at=last_reviewed_at,
            last_pushed_at=head_commit.commit.committer.date,
            **fields,
        )

    def get_item_discussion(
        self, repo_id: str, number: int, max_comments: int = 10
    ) -> str:
        """Render an item's body and latest comments as plain text."""
        repository = self.get_repository(repo_id)
        github_issue = repository.get_issue(number)

        lines = [f"# {github_issue.title}", "", github_issue.body or "(no description)"]
        comments = list(github_issue.get_comments())[-max_comments:]
        if comments:
            lines.extend(["", f"## Latest {len(comments)} comment(s)"])
            for comment in comments:
                created = comment.created_at.astimezone(UTC).strftime("%Y-%m-%d")
                login = comment.user.login if comment.user else "ghost"
                lines.append(f"- {login} ({created}): {comment.body.strip()}")
        return "\n".join(lines)
