"""Tests for GitHub search query building."""

from datetime import UTC, datetime

import pytest

from gh_triage.github_client.search import (
    build_activity_query,
    build_exclusion_list,
    format_datetime_for_github,
    parse_repo_id,
)


class TestParseRepoId:
    """Test repository id parsing."""

    def test_valid(self) -> None:
        """owner/name splits into its parts."""
        assert parse_repo_id("acme/api") == ("acme", "api")
        assert parse_repo_id(" /acme/api/ ") == ("acme", "api")

    @pytest.mark.parametrize("bad", ["acme", "acme/", "a/b/c", ""])
    def test_invalid(self, bad: str) -> None:
        """Anything else is rejected."""
        with pytest.raises(ValueError, match="owner/name"):
            parse_repo_id(bad)


class TestBuildExclusionList:
    """Test exclusion list building."""

    def test_combines_and_deduplicates(self) -> None:
        """Both sources merge into a sorted unique list."""
        result = build_exclusion_list(["repo2", "repo1"], "repo3, repo1,,")
        assert result == ["repo1", "repo2", "repo3"]

    def test_empty(self) -> None:
        """No exclusions gives an empty list."""
        assert build_exclusion_list(None, None) == []


class TestBuildActivityQuery:
    """Test organization-wide activity queries."""

    def test_basic(self) -> None:
        """Org and updated qualifiers are always present."""
        query = build_activity_query("acme", datetime(2024, 1, 1, tzinfo=UTC))
        assert query == "org:acme updated:>=2024-01-01T00:00:00Z"

    def test_with_state_and_exclusions(self) -> None:
        """State and repository exclusions are appended."""
        query = build_activity_query(
            "acme", datetime(2024, 1, 1, tzinfo=UTC), ["private", "old"], state="open"
        )
        assert query == (
            "org:acme updated:>=2024-01-01T00:00:00Z state:open "
            "-repo:acme/private -repo:acme/old"
        )


def test_format_datetime_for_github() -> None:
    """Timestamps use the Z-suffixed search format."""
    value = datetime(2024, 3, 4, 5, 6, 7, tzinfo=UTC)
    assert format_datetime_for_github(value) == "2024-03-04T05:06:07Z"
