"""Health check suites and how their outcome is reported over HTTP."""

from __future__ import annotations

from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Callable

CheckFunc = Callable[[], str]


@dataclass
class _Check:
    name: str
    func: CheckFunc
    message: str = ""
    error: BaseException | None = None
    processed: bool = False

    def run(self) -> None:
        try:
            self.message = self.func()
        except Exception as exc:  # noqa: BLE001 - a failing check is a result
            self.error = exc
        self.processed = True

    @property
    def passed(self) -> bool:
        return self.processed and self.error is None

    def outcome(self) -> str:
        return self.message if self.error is None else str(self.error)


@dataclass
class CheckSuite:
    """A named group of checks; each check returns a message or raises."""

    name: str
    checks: list[_Check] = field(default_factory=list)
    err_on_setup: BaseException | None = None
    on_completion: Callable[[], None] | None = None

    def add_check(self, name: str, func: CheckFunc) -> None:
        self.checks.append(_Check(name, func))

    def process(self) -> None:
        """Run every check, then the completion hook if one is set."""
        try:
            for check in self.checks:
                check.run()
        finally:
            if self.on_completion is not None:
                self.on_completion()

    def passed(self) -> bool:
        return all(check.passed for check in self.checks)

    def result(self) -> str:
        """One line per check, marked as passed or failed."""
        lines = []
        for check in self.checks:
            mark = "✓" if check.passed else "✗"
            lines.append(f"[{mark}] {check.name}: {check.outcome()}")
        return "\n".join(lines)

    def raw_result(self) -> str:
        """The bare message or error of each check, one per line."""
        return "\n".join(check.outcome() for check in self.checks)


def check_response(suite: CheckSuite, raw: bool = False) -> tuple[int, str]:
    """Return ``(status, body)`` describing a processed suite."""
    if suite.err_on_setup is not None:
        return int(HTTPStatus.INTERNAL_SERVER_ERROR), str(suite.err_on_setup)
    body = suite.raw_result() if raw else suite.result()
    if not suite.passed():
        return int(HTTPStatus.INTERNAL_SERVER_ERROR), body
    return int(HTTPStatus.OK), body