"""Research stage: pulls recent GitHub activity with bounded retries."""

import logging
import time
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from typing import Any, TypeVar

import requests
from github.GithubException import GithubException, RateLimitExceededException
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    stop_after_delay,
    wait_exponential,
)

from ..errors import FetchError
from ..github_client.client import GitHubClient
from ..github_client.search import build_activity_query
from ..models import FetchResult, GitHubItem

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_retryable_error(error: BaseException) -> bool:
    """Rate limits, provider 5xx responses and network failures are retried."""
    if isinstance(error, RateLimitExceededException):
        return True
    if isinstance(error, GithubException):
        return error.status is not None and error.status >= 500
    return isinstance(
        error, (requests.exceptions.ConnectionError, requests.exceptions.Timeout)
    )


class _SourceExhausted(Exception):
    """A source could not be read completely."""


class GitHubResearchCollector:
    """Fetches and normalizes issues and pull requests for a triage run.

    Pagination is walked one page at a time so that a rate-limited page is
    retried and resumed instead of silently dropping the rest of the listing.
    When the retry budget or the total fetch time runs out, whatever was
    collected is returned with ``incomplete=True``.
    """

    def __init__(
        self,
        client: GitHubClient,
        configured_repos: Sequence[str] | None = None,
        org: str | None = None,
        excluded_repos: Sequence[str] | None = None,
        max_attempts: int = 5,
        timeout_seconds: float = 300.0,
        wait_multiplier: float = 1.0,
        wait_max: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client
        self.configured_repos = list(configured_repos or [])
        self.org = org
        self.excluded_repos = list(excluded_repos or [])
        self.max_attempts = max_attempts
        self.timeout_seconds = timeout_seconds
        self.wait_multiplier = wait_multiplier
        self.wait_max = wait_max
        self._clock = clock
        self._sleep = sleep
        # item id -> (repo id, number), refreshed on every fetch
        self._locations: dict[str, tuple[str, int]] = {}

    def fetch_recent_activity(
        self, since: datetime, repo_ids: Sequence[str] | None = None
    ) -> FetchResult:
        """Fetch items updated since ``since``.

        Args:
            since: Window start; must be in the past
            repo_ids: ``owner/name`` ids; empty means all configured repositories

        Returns:
            FetchResult with de-duplicated items and a completeness marker

        Raises:
            ValueError: If ``since`` is in the future or no repository is known
            FetchError: If fetching failed before a single item was obtained
        """
        if since.tzinfo is None:
            since = since.replace(tzinfo=UTC)
        if since >= datetime.now(UTC):
            raise ValueError(f"'since' must be in the past, got {since.isoformat()}")

        sources = self._resolve_sources(since, list(repo_ids or []))
        deadline = self._clock() + self.timeout_seconds

        items: list[GitHubItem] = []
        seen: set[str] = set()
        problems: list[str] = []
        failed_fetch = False

        for label, fetch_page in sources:
            try:
                for raw in self._iterate_pages(fetch_page, deadline):
                    try:
                        item = self._call_with_retry(
                            self.client.convert_issue, deadline, raw
                        )
                    except _SourceExhausted:
                        raise
                    except Exception as e:
                        number = getattr(raw, "number", "?")
                        logger.warning(
                            "Skipping unreadable item #%s in %s: %s", number, label, e
                        )
                        problems.append(f"{label}#{number}: {e}")
                        continue
                    key = f"{item.provider}:{item.external_id}"
                    if key in seen:
                        continue
                    seen.add(key)
                    items.append(item)
                    if item.repository and item.number is not None:
                        self._locations[item.id] = (item.repository, item.number)
            except _SourceExhausted as e:
                problems.append(f"{label}: {e}")
                failed_fetch = True
            except Exception as e:
                logger.error("Failed to read %s: %s", label, e)
                problems.append(f"{label}: {e}")
                failed_fetch = True

        logger.info(
            "Fetched %d item(s) from %d source(s)%s",
            len(items),
            len(sources),
            " (incomplete)" if problems else "",
        )

        if failed_fetch and not items:
            raise FetchError(
                f"No items fetched after exhausting retries: {'; '.join(problems)}"
            )

        return FetchResult(
            items=items,
            incomplete=bool(problems),
            reason="; ".join(problems) if problems else None,
        )

    def enrich_item_context(self, item_id: str) -> str:
        """Deep fetch of an item's discussion for reasoning or display."""
        if item_id not in self._locations:
            raise ValueError(f"Unknown item id {item_id}; fetch activity first")
        repo_id, number = self._locations[item_id]
        deadline = self._clock() + self.timeout_seconds
        return self._call_with_retry(
            self.client.get_item_discussion, deadline, repo_id, number
        )

    def _resolve_sources(
        self, since: datetime, repo_ids: list[str]
    ) -> list[tuple[str, Callable[[int], list[Any]]]]:
        repos = repo_ids or self.configured_repos
        if repos:
            return [
                (repo_id, self._repo_page_fetcher(repo_id, since))
                for repo_id in dict.fromkeys(repos)
            ]
        if self.org:
            query = build_activity_query(self.org, since, self.excluded_repos)
            return [(f"search '{query}'", self._search_page_fetcher(query))]
        raise ValueError(
            "No repositories to scan: pass repo ids or configure TRIAGE_REPOS/GITHUB_ORG"
        )

    def _repo_page_fetcher(
        self, repo_id: str, since: datetime
    ) -> Callable[[int], list[Any]]:
        def fetch(page: int) -> list[Any]:
            return self.client.get_activity_page(repo_id, since, page)

        return fetch

    def _search_page_fetcher(self, query: str) -> Callable[[int], list[Any]]:
        def fetch(page: int) -> list[Any]:
            return self.client.search_activity_page(query, page)

        return fetch

    def _iterate_pages(self, fetch_page: Callable[[int], list[Any]], deadline: float):
        page = 0
        while True:
            remaining = deadline - self._clock()
            if remaining <= 0:
                raise _SourceExhausted(
                    f"fetch time budget of {self.timeout_seconds}s exceeded "
                    f"at page {page}"
                )
            self.client.check_rate_limit(max_sleep=remaining)
            batch = self._call_with_retry(fetch_page, deadline, page)
            if not batch:
                return
            yield from batch
            page += 1

    def _call_with_retry(
        self, fn: Callable[..., T], deadline: float, *args: Any
    ) -> T:
        remaining = max(deadline - self._clock(), 0.0)
        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts) | stop_after_delay(remaining),
            wait=wait_exponential(multiplier=self.wait_multiplier, max=self.wait_max),
            retry=retry_if_exception(is_retryable_error),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self._sleep,
            reraise=True,
        )
        try:
            return retrying(fn, *args)
        except Exception as e:
            if is_retryable_error(e):
                raise _SourceExhausted(f"retry budget exhausted ({e})") from e
            raise
