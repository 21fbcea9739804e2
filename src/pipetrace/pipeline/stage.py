"""Ordered pipeline stage definitions."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Iterator


TRANSITION_SEPARATOR = "->"


def transition_key(from_stage: str, to_stage: str) -> str:
    """Return the report key for one stage-to-stage hop."""

    return f"{from_stage}{TRANSITION_SEPARATOR}{to_stage}"


@dataclass(frozen=True, slots=True)
class StageDefinition:
    """Immutable ordered sequence of unique stage names.

    Order defines the expected transition sequence; the last name is the
    terminal stage of the pipeline.
    """

    names: tuple[str, ...]
    _index: dict[str, int] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        names = tuple(self.names)
        if len(names) < 2:
            raise ValueError(f"A pipeline needs at least two stages, got {list(names)}")
        for name in names:
            if not isinstance(name, str) or not name.strip():
                raise ValueError(f"Stage names must be non-empty strings, got {name!r}")
            if TRANSITION_SEPARATOR in name:
                raise ValueError(
                    f"Stage name {name!r} must not contain '{TRANSITION_SEPARATOR}'"
                )
        if len(set(names)) != len(names):
            dupes = sorted({name for name in names if names.count(name) > 1})
            raise ValueError(f"Stage names must be unique, duplicated: {dupes}")

        object.__setattr__(self, "names", names)
        object.__setattr__(self, "_index", {name: idx for idx, name in enumerate(names)})

    @classmethod
    def of(cls, names: Iterable[str]) -> StageDefinition:
        return cls(names=tuple(names))

    def __len__(self) -> int:
        return len(self.names)

    def __iter__(self) -> Iterator[str]:
        return iter(self.names)

    def __contains__(self, name: object) -> bool:
        return name in self._index

    def index(self, name: str) -> int:
        """Position of `name`; raises `KeyError` for unknown stages."""

        return self._index[name]

    @property
    def first(self) -> str:
        return self.names[0]

    @property
    def last(self) -> str:
        return self.names[-1]

    def transitions(self) -> list[tuple[str, str]]:
        """Adjacent (from, to) stage pairs in pipeline order."""

        return list(zip(self.names, self.names[1:]))

    def transition_keys(self) -> list[str]:
        return [transition_key(src, dst) for src, dst in self.transitions()]
