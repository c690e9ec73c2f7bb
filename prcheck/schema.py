"""Result contract for pull request reconciliation."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ResultStatus(StrEnum):
    """Review status verdicts."""

    MISSING_PULL_REQUEST = "missing_pull_request"
    NEEDS_REVIEW = "needs_review"
    REVIEWED = "reviewed"


class ReconciliationResult(BaseModel):
    """Verdict for one author, or one of their pull requests, in a repository."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    org: str = Field(min_length=1)
    repo: str = Field(min_length=1)
    author: str = Field(min_length=1)
    status: ResultStatus
    pull_number: int | None = Field(default=None, ge=1)
    review_state: str | None = None

    @model_validator(mode="after")
    def validate_status_fields(self) -> ReconciliationResult:
        """Check that each status carries exactly the fields it needs."""
        if self.status is ResultStatus.MISSING_PULL_REQUEST:
            if self.pull_number is not None or self.review_state is not None:
                raise ValueError("missing_pull_request results carry no pull request fields")
            return self
        if self.pull_number is None:
            raise ValueError(f"{self.status} results require pull_number")
        if self.status is ResultStatus.NEEDS_REVIEW and self.review_state is not None:
            raise ValueError("needs_review results carry no review_state")
        if self.status is ResultStatus.REVIEWED and not self.review_state:
            raise ValueError("reviewed results require review_state")
        return self

    @classmethod
    def missing_pull_request(cls, org: str, repo: str, author: str) -> ReconciliationResult:
        return cls(org=org, repo=repo, author=author, status=ResultStatus.MISSING_PULL_REQUEST)

    @classmethod
    def needs_review(
        cls, org: str, repo: str, author: str, pull_number: int
    ) -> ReconciliationResult:
        return cls(
            org=org,
            repo=repo,
            author=author,
            status=ResultStatus.NEEDS_REVIEW,
            pull_number=pull_number,
        )

    @classmethod
    def reviewed(
        cls, org: str, repo: str, author: str, pull_number: int, review_state: str
    ) -> ReconciliationResult:
        return cls(
            org=org,
            repo=repo,
            author=author,
            status=ResultStatus.REVIEWED,
            pull_number=pull_number,
            review_state=review_state,
        )
