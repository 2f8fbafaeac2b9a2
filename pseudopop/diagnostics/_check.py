from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Assumption:
    """
    An identification condition behind a causal reading of an IPW estimate.

    ``testable`` says whether the data can speak to it (e.g. positivity,
    via the weight distribution) or whether it rests on subject-matter
    knowledge alone (e.g. no unmeasured confounding).
    """

    name: str
    testable: bool

    @property
    def tag(self) -> str:
        """Fixed-width label for summary tables."""
        return "[  testable  ]" if self.testable else "[ untestable ]"


@dataclass(frozen=True)
class DiagnosticCheck:
    """Outcome of one diagnostic: a name, a verdict and a one-line explanation."""

    name: str
    passed: bool
    detail: str

    @property
    def status(self) -> str:
        return "PASS" if self.passed else "FAIL"


class DiagnosticReport:
    """
    An ordered collection of ``DiagnosticCheck`` results under a title.

    Subclasses supply ``_title()``; rendering and the pass/fail verdict
    are shared.
    """

    def __init__(self, checks: list[DiagnosticCheck], exposure: str, outcome: str) -> None:
        self._checks = list(checks)
        self._exposure = exposure
        self._outcome = outcome

    def _title(self) -> str:
        raise NotImplementedError

    @property
    def checks(self) -> list[DiagnosticCheck]:
        """A copy of the checks, in the order they were run."""
        return list(self._checks)

    @property
    def passed(self) -> bool:
        return all(c.passed for c in self._checks)

    @property
    def failed_checks(self) -> list[DiagnosticCheck]:
        return [c for c in self._checks if not c.passed]

    def summary(self) -> str:
        lines = ["", self._title(), "─" * 50]
        lines += [f"  [{c.status}]  {c.name}: {c.detail}" for c in self._checks]
        lines.append("")
        n_failed = len(self.failed_checks)
        lines.append("  All checks passed." if not n_failed else f"  {n_failed} check(s) failed.")
        lines.append("")
        return "\n".join(lines)

    def __repr__(self) -> str:
        return self.summary()
