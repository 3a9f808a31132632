"""Health checks derived from the output of ``barman check``."""

from __future__ import annotations

import re
import subprocess

from pgflex.checks import CheckSuite

_LINE = re.compile(r"\s*(.*?):(.*)$")


def _make_check(detail: str, failed: bool | None = None):
    """Build a check reporting ``detail``; it fails when ``failed`` says so,
    or, if ``failed`` is None, when the detail mentions FAILED."""
    is_failure = ("FAILED" in detail) if failed is None else failed

    def run() -> str:
        if is_failure:
            raise RuntimeError(detail)
        return detail

    return run


def parse_barman_check(suite: CheckSuite, output: str) -> CheckSuite:
    """Add one check per ``name: status`` line of ``barman check`` output."""
    for line in output.split("\n"):
        match = _LINE.search(line)
        if match is None:
            continue
        name, detail = match.group(1), match.group(2)
        if detail == "":
            continue
        suite.add_check(name, _make_check(detail))
    return suite


def check_barman_connection(suite: CheckSuite) -> CheckSuite:
    """Run ``barman check pg`` and turn its report into checks."""
    try:
        proc = subprocess.run(
            ["barman", "check", "pg"],
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            check=True,
        )
    except (OSError, subprocess.CalledProcessError):
        suite.add_check(
            "connection",
            _make_check("failed running `barman check pg`", failed=True),
        )
        return suite

    return parse_barman_check(suite, proc.stdout.decode("utf-8", errors="replace"))