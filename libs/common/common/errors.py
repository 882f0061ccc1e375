"""
Shared error types for the media QA harness.

Every failure source in a scenario maps onto one of these classes so the
final verdict can enumerate causes by kind:

    PreconditionError   secret / required config could not be fetched
    SetupError          staging or config mutation failed
    SubprocessError     publisher / prober launch or runtime failure
    ParseError          subprocess output did not match the expected schema
    ScenarioAssertionError  a collected result failed a predicate
    DeadlineExceeded    the scenario budget ran out
    PollTimeout         a polling loop exhausted its attempt budget
    ApiError            control API transport / status / envelope failure
"""

from __future__ import annotations


# ── Base errors ────────────────────────────────────────────────────────

class HarnessError(Exception):
    """Generic harness error."""

    kind = "harness_error"

    def __init__(self, detail: str = "Harness error"):
        super().__init__(detail)
        self.detail = detail

    def caused_by(self, exc: BaseException | None) -> "HarnessError":
        """Attach *exc* as ``__cause__`` for errors recorded rather than raised."""
        self.__cause__ = exc
        return self

    def __str__(self) -> str:
        cause = self.__cause__
        if cause is not None and str(cause):
            return f"{self.detail}: {cause}"
        return self.detail


class PreconditionError(HarnessError):
    kind = "precondition"

    def __init__(self, detail: str = "Precondition failed"):
        super().__init__(detail)


class SetupError(HarnessError):
    kind = "setup"

    def __init__(self, detail: str = "Setup failed"):
        super().__init__(detail)


class SubprocessError(HarnessError):
    """External media process failed to start or exited abnormally."""

    kind = "subprocess"

    def __init__(self, detail: str = "Subprocess failed", returncode: int | None = None, output: str = ""):
        super().__init__(detail)
        self.returncode = returncode
        self.output = output


class ParseError(HarnessError):
    kind = "parse"

    def __init__(self, detail: str = "Unparseable output"):
        super().__init__(detail)


class ScenarioAssertionError(HarnessError, AssertionError):
    kind = "assertion"

    def __init__(self, detail: str = "Assertion failed"):
        super().__init__(detail)


class DeadlineExceeded(HarnessError):
    kind = "deadline"

    def __init__(self, detail: str = "Deadline exceeded"):
        super().__init__(detail)


class PollTimeout(HarnessError):
    kind = "poll_timeout"

    def __init__(self, detail: str = "Polling budget exhausted", attempts: int = 0):
        super().__init__(detail)
        self.attempts = attempts


class ApiError(HarnessError):
    """Control API call failed (transport, HTTP status or envelope code)."""

    kind = "api"

    def __init__(self, detail: str = "API request failed", path: str = "", status_code: int | None = None):
        super().__init__(detail)
        self.path = path
        self.status_code = status_code


# ── Aggregate ──────────────────────────────────────────────────────────

def kind_of(exc: BaseException) -> str:
    """Taxonomy kind of *exc*; the class name for anything outside it."""
    if isinstance(exc, HarnessError):
        return exc.kind
    return type(exc).__name__


class ScenarioFailed(HarnessError):
    """Aggregated verdict: one entry per contributing cause."""

    kind = "scenario_failed"

    def __init__(self, causes: list[tuple[str, BaseException]]):
        self.causes = causes
        lines = [f"{len(causes)} failure(s)"]
        lines.extend(f"  [{name}] {kind_of(exc)}: {exc}" for name, exc in causes)
        super().__init__("\n".join(lines))


class ContextCancelled(HarnessError):
    """A bounded context was cancelled for a reason other than its deadline."""

    kind = "cancelled"

    def __init__(self, detail: str = "Context cancelled", reason: str = ""):
        super().__init__(detail)
        self.reason = reason
