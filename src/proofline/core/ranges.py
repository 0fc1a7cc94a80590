"""Half-open character spans over field text."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Iterator


@dataclass(slots=True, frozen=True)
class TextSpan(Sequence[int]):
    """A ``[start, end)`` span using absolute character offsets."""

    start: int
    end: int

    def __post_init__(self) -> None:
        start = self._coerce_index(self.start, "start")
        end = self._coerce_index(self.end, "end")
        if end < start:
            raise ValueError(f"TextSpan end ({end}) precedes start ({start})")
        object.__setattr__(self, "start", start)
        object.__setattr__(self, "end", end)

    @staticmethod
    def _coerce_index(value: Any, label: str) -> int:
        try:
            number = int(value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"TextSpan {label} must be an integer") from exc
        if number < 0:
            raise ValueError(f"TextSpan {label} must be non-negative")
        return number

    def __len__(self) -> int:
        return 2

    def __getitem__(self, index: int | slice) -> int | tuple[int, ...]:
        if isinstance(index, slice):
            return self.to_tuple()[index]
        if index == 0:
            return self.start
        if index == 1:
            return self.end
        raise IndexError("TextSpan index out of range")

    def __iter__(self) -> Iterator[int]:
        yield self.start
        yield self.end

    @property
    def length(self) -> int:
        return self.end - self.start

    @property
    def is_empty(self) -> bool:
        return self.start == self.end

    def overlaps(self, other: "TextSpan") -> bool:
        """Return ``True`` when the two spans share at least one character."""

        return self.start < other.end and other.start < self.end

    def overlaps_any(self, others: Iterable["TextSpan"]) -> bool:
        return any(self.overlaps(other) for other in others)

    def contains_offset(self, offset: int) -> bool:
        return self.start <= offset < self.end

    def shift(self, delta: int) -> "TextSpan":
        """Return the span moved by ``delta`` characters."""

        return TextSpan(self.start + delta, self.end + delta)

    def slice(self, text: str) -> str:
        return text[self.start : self.end]

    def to_tuple(self) -> tuple[int, int]:
        return (self.start, self.end)

    def to_dict(self) -> dict[str, int]:
        return {"start": self.start, "end": self.end}

    @classmethod
    def from_value(cls, value: Any) -> "TextSpan":
        """Coerce a span, mapping or ``(start, end)`` pair into a :class:`TextSpan`."""

        if isinstance(value, TextSpan):
            return value
        if isinstance(value, Mapping):
            start = value.get("start")
            end = value.get("end")
            if start is None or end is None:
                raise ValueError("TextSpan mappings require start and end keys")
            return cls(start, end)
        if isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
            seq = list(value)
            if len(seq) != 2:
                raise ValueError("TextSpan sequences must have exactly two entries")
            return cls(seq[0], seq[1])
        raise TypeError("Unsupported TextSpan input")


__all__ = ["TextSpan"]
