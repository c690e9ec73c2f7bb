"""Per-repository pull request and review reconciliation."""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Literal, Protocol

from prcheck.github_client import PullRequest, Review
from prcheck.limiter import ConcurrencyLimiter
from prcheck.output import OrderedReporter, render_failure, render_result
from prcheck.schema import ReconciliationResult
from prcheck.settings import WILDCARD, CheckSettings

logger = logging.getLogger(__name__)

AuthorSet = Sequence[str] | Literal["@"]


class PullRequestSource(Protocol):
    """What reconciliation needs from the GitHub fetcher."""

    async def list_open_pull_requests(
        self, org: str, repo: str, cutoff: float | None
    ) -> tuple[PullRequest, ...]: ...

    async def list_reviews(
        self, org: str, repo: str, pull_number: int, cutoff: float | None
    ) -> tuple[Review, ...]: ...


@dataclass(slots=True)
class CheckSummary:
    """Outcome of one ``check`` run across repositories."""

    results: dict[str, list[ReconciliationResult]] = field(default_factory=dict)
    failures: dict[str, BaseException] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures


async def reconcile(
    org: str,
    repo: str,
    authors: AuthorSet,
    cutoff: float | None,
    source: PullRequestSource,
) -> list[ReconciliationResult]:
    """Classify the review status of every relevant open pull request in a repository.

    Explicit authors without an open pull request are reported as missing. With
    the wildcard, the authors are whoever has an open pull request, so nobody
    can be missing. Only the first review of a pull request decides its status.
    Any fetch failure propagates and discards the whole repository's results.
    """
    pulls = list(await source.list_open_pull_requests(org, repo, cutoff))

    if authors == WILDCARD:
        expected_authors = list(dict.fromkeys(pull.author_login for pull in pulls))
    else:
        expected_authors = list(dict.fromkeys(authors))
        pulls = [pull for pull in pulls if pull.author_login in expected_authors]

    authors_with_pulls = {pull.author_login for pull in pulls}
    results = [
        ReconciliationResult.missing_pull_request(org, repo, author)
        for author in expected_authors
        if author not in authors_with_pulls
    ]

    reviews_per_pull = await asyncio.gather(
        *(source.list_reviews(org, repo, pull.number, cutoff) for pull in pulls)
    )

    for pull, reviews in zip(pulls, reviews_per_pull, strict=True):
        if not reviews:
            results.append(
                ReconciliationResult.needs_review(org, repo, pull.author_login, pull.number)
            )
        else:
            results.append(
                ReconciliationResult.reviewed(
                    org, repo, pull.author_login, pull.number, reviews[0].state
                )
            )
    return results


async def run_check(
    settings: CheckSettings,
    source: PullRequestSource,
    reporter: OrderedReporter,
    *,
    limiter: ConcurrencyLimiter | None = None,
) -> CheckSummary:
    """Reconcile every configured repository and report the results.

    A repository's lines are reported only once its reconciliation succeeded.
    Failed repositories are reported on the error stream and recorded in the
    summary; they never stop the others.
    """
    limiter = limiter or ConcurrencyLimiter(settings.max_concurrency)
    summary = CheckSummary()

    async def check_repo(repo: str) -> list[ReconciliationResult]:
        results = await reconcile(
            settings.org, repo, settings.authors, settings.cache_cutoff, source
        )
        for result in results:
            reporter.report(render_result(result))
        return results

    repos = list(dict.fromkeys(settings.repos))
    outcomes = await limiter.run_all(functools.partial(check_repo, repo) for repo in repos)

    for repo, outcome in zip(repos, outcomes, strict=True):
        if isinstance(outcome, BaseException):
            if not isinstance(outcome, Exception):
                raise outcome
            logger.warning("Checking %s/%s failed: %s", settings.org, repo, outcome)
            reporter.report(render_failure(repo, outcome), err=True)
            summary.failures[repo] = outcome
        else:
            summary.results[repo] = outcome
    return summary
