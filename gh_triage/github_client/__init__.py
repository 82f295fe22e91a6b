"""GitHub adapter: PyGitHub access and mapping onto GitHubItem."""

from .client import GitHubClient, map_ci_status, map_merge_status, map_review_status
from .search import build_activity_query, parse_repo_id

__all__ = [
    "GitHubClient",
    "build_activity_query",
    "map_ci_status",
    "map_merge_status",
    "map_review_status",
    "parse_repo_id",
]
