"""Status line rendering and deterministic output ordering."""

from __future__ import annotations

from dataclasses import dataclass, field

import click
import typer

from prcheck.schema import ReconciliationResult, ResultStatus


def _prefix(author: str, repo: str) -> str:
    return f"{typer.style(author, fg='magenta')} -> {typer.style(repo, fg='cyan')}"


def pull_request_url(org: str, repo: str, pull_number: int | None) -> str:
    return f"https://github.com/{org}/{repo}/pull/{pull_number}/changes"


def clone_command(author: str, repo: str) -> str:
    return f"git clone https://github.com/{author}/{repo} {author}/{repo}"


def render_result(result: ReconciliationResult) -> str:
    """Render one reconciliation result as a (possibly multi-line) status entry."""
    prefix = _prefix(result.author, result.repo)

    if result.status is ResultStatus.MISSING_PULL_REQUEST:
        return f"{prefix}: {typer.style('no pulls found', fg='white')}"

    if result.status is ResultStatus.NEEDS_REVIEW:
        url = pull_request_url(result.org, result.repo, result.pull_number)
        return (
            f"{prefix}: {typer.style('needs review!', fg='white', bg='red', bold=True)}\n"
            f"\t{typer.style(url, fg='white', bg='red', bold=True)}\n"
            f"\t{typer.style(clone_command(result.author, result.repo), fg='cyan')}\n"
        )

    return f"{prefix}: {typer.style('reviewed', fg='green')}, status: {result.review_state}"


def render_failure(repo: str, error: BaseException) -> str:
    status = typer.style("check failed", fg="red", bold=True)
    return f"{typer.style(repo, fg='cyan')}: {status} ({error})"


@dataclass(order=True, slots=True)
class _BufferedLine:
    sort_key: str
    sequence: int
    text: str = field(compare=False)
    err: bool = field(compare=False)


class OrderedReporter:
    """Buffer status entries from concurrent producers and emit them sorted.

    Entries are ordered by their text with styling removed, then by the order in
    which they were reported. Each entry is written whole, so a multi-line entry
    is never split by another producer's output.
    """

    def __init__(self) -> None:
        self._buffer: list[_BufferedLine] = []
        self._sequence = 0

    def __len__(self) -> int:
        return len(self._buffer)

    def report(self, line: str, *, err: bool = False) -> None:
        self._buffer.append(
            _BufferedLine(
                sort_key=click.unstyle(line),
                sequence=self._sequence,
                text=line,
                err=err,
            )
        )
        self._sequence += 1

    def sorted_lines(self, *, err: bool = False) -> list[str]:
        """Buffered entries for one stream in emission order."""
        return [entry.text for entry in sorted(self._buffer) if entry.err is err]

    def flush(self) -> None:
        """Write every buffered entry, stdout entries first, and clear the buffer."""
        for line in self.sorted_lines():
            typer.echo(line)
        for line in self.sorted_lines(err=True):
            typer.echo(line, err=True)
        self._buffer.clear()
