"""GitHub search query building and repository id handling."""

from datetime import datetime


def parse_repo_id(repo_id: str) -> tuple[str, str]:
    """Split an ``owner/name`` repository id.

    Raises:
        ValueError: If the id is not of the form owner/name
    """
    parts = repo_id.strip().strip("/").split("/")
    if len(parts) != 2 or not all(parts):
        raise ValueError(f"Repository id must look like 'owner/name', got {repo_id!r}")
    return parts[0], parts[1]


def build_exclusion_list(
    exclude_repo: list[str] | None, exclude_repos: str | None
) -> list[str]:
    """Build combined list of repositories to exclude.

    Args:
        exclude_repo: List of individual repository names to exclude
        exclude_repos: Comma-separated string of repository names to exclude

    Returns:
        Sorted list of unique repository names, with empty strings filtered out

    Example:
        >>> build_exclusion_list(["repo1", "repo2"], "repo3,repo4")
        ["repo1", "repo2", "repo3", "repo4"]
    """
    exclusions = []

    if exclude_repo:
        exclusions.extend(exclude_repo)

    if exclude_repos:
        exclusions.extend([repo.strip() for repo in exclude_repos.split(",")])

    return sorted(set(filter(None, exclusions)))


def format_datetime_for_github(value: datetime) -> str:
    """Format a timestamp the way GitHub search qualifiers expect it."""
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


def build_activity_query(
    org: str,
    since: datetime,
    excluded_repos: list[str] | None = None,
    state: str = "all",
) -> str:
    """Build an organization-wide search query for recently updated work.

    Issues and pull requests are both matched; the search API returns them
    through the same endpoint.

    Example:
        >>> build_activity_query("myorg", datetime(2024, 1, 1), ["private"])
        "org:myorg updated:>=2024-01-01T00:00:00Z -repo:myorg/private"
    """
    query_parts = [f"org:{org}", f"updated:>={format_datetime_for_github(since)}"]

    if state != "all":
        query_parts.append(f"state:{state}")

    if excluded_repos:
        for repo in excluded_repos:
            query_parts.append(f"-repo:{org}/{repo}")

    return " ".join(query_parts)
