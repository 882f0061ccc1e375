"""
Outcome slots: one write-once error cell per independent failure source.

A scenario declares its slots up front (``setup``, ``prober``,
``streams``, ...).  Each slot is owned by exactly one writer, so no lock
is needed; writing a slot twice is a programming error and raises.
:func:`reduce_outcomes` turns the slots plus the context's terminal error
into a single verdict.
"""

from __future__ import annotations

from typing import Iterator, Sequence

from common.errors import ScenarioFailed


class SlotAlreadyWritten(RuntimeError):
    pass


class OutcomeSlots:
    """Fixed, ordered collection of optional errors. Unset means success."""

    def __init__(self, names: Sequence[str]):
        if len(set(names)) != len(names):
            raise ValueError(f"duplicate slot names: {list(names)}")
        self._names = tuple(names)
        self._errors: dict[str, BaseException | None] = {}

    @property
    def names(self) -> tuple[str, ...]:
        return self._names

    def set(self, name: str, error: BaseException | None) -> None:
        if name not in self._names:
            raise KeyError(f"unknown outcome slot {name!r}")
        if name in self._errors:
            raise SlotAlreadyWritten(f"outcome slot {name!r} already written")
        self._errors[name] = error

    def fail(self, name: str, error: BaseException) -> None:
        self.set(name, error)

    def written(self, name: str) -> bool:
        return name in self._errors

    def get(self, name: str) -> BaseException | None:
        if name not in self._names:
            raise KeyError(f"unknown outcome slot {name!r}")
        return self._errors.get(name)

    def __iter__(self) -> Iterator[tuple[str, BaseException | None]]:
        for name in self._names:
            yield name, self._errors.get(name)

    def failures(self) -> list[tuple[str, BaseException]]:
        return [(name, err) for name, err in self if err is not None]


def reduce_outcomes(context_failure: BaseException | None, slots: OutcomeSlots) -> ScenarioFailed | None:
    """Combine every non-absent cause into one error, or ``None`` for a pass.

    *context_failure* is the context's verdict-relevant error, i.e. its
    deadline expiring; a deliberate cancellation must be passed as ``None``.
    """
    causes: list[tuple[str, BaseException]] = []
    if context_failure is not None:
        causes.append(("context", context_failure))
    causes.extend(slots.failures())
    if not causes:
        return None
    return ScenarioFailed(causes)
