"""Fragment aggregation for incremental stream output.

A FragmentBuffer is an immutable, ordered view over the fragments a
session has received. Appending returns a new buffer; buffers created
from the same session share one growable list, so appending to the most
recent buffer is O(1) amortized while older buffers keep rendering
exactly the prefix they were created with.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Iterator, Sequence


class FragmentBuffer(Sequence[str]):
    """Immutable prefix view over a shared list of fragments."""

    __slots__ = ("_store", "_length")

    def __init__(self, fragments: Iterable[str] = ()) -> None:
        self._store: list[str] = list(fragments)
        self._length = len(self._store)

    @classmethod
    def _view(cls, store: list[str], length: int) -> FragmentBuffer:
        buf = cls.__new__(cls)
        buf._store = store
        buf._length = length
        return buf

    def __len__(self) -> int:
        return self._length

    def __getitem__(self, index):  # type: ignore[override]
        if isinstance(index, slice):
            return self._store[: self._length][index]
        if index < 0:
            index += self._length
        if not 0 <= index < self._length:
            raise IndexError("fragment index out of range")
        return self._store[index]

    def __iter__(self) -> Iterator[str]:
        for i in range(self._length):
            yield self._store[i]

    def __eq__(self, other: object) -> bool:
        if isinstance(other, FragmentBuffer):
            return list(self) == list(other)
        if isinstance(other, (list, tuple)):
            return list(self) == list(other)
        return NotImplemented

    def __hash__(self) -> int:
        return hash(tuple(self))

    def __repr__(self) -> str:
        return f"FragmentBuffer({list(self)!r})"


def append(current: FragmentBuffer, fragment: str) -> FragmentBuffer:
    """Return a new buffer with ``fragment`` appended; ``current`` is unchanged."""
    store = current._store
    if current._length == len(store):
        # current is the tip of the shared list, extend in place
        store.append(fragment)
        return FragmentBuffer._view(store, current._length + 1)
    # a longer buffer already branched off this prefix, copy before diverging
    branched = store[: current._length]
    branched.append(fragment)
    return FragmentBuffer._view(branched, len(branched))


def fold(fragments: Iterable[str], initial: FragmentBuffer | None = None) -> FragmentBuffer:
    """Fold ``append`` over ``fragments``."""
    buffer = initial if initial is not None else FragmentBuffer()
    for fragment in fragments:
        buffer = append(buffer, fragment)
    return buffer


def render(
    buffer: Sequence[str],
    delimiter: str = "",
    boundaries: Iterable[int] = (),
) -> str:
    """Concatenate fragments into the externally visible text.

    Valid for any prefix. When ``delimiter`` is non-empty it is inserted
    before each fragment index listed in ``boundaries`` (reopen points),
    so retried continuations are never silently glued onto earlier output.
    """
    if not delimiter:
        return "".join(buffer)

    marks = Counter(b for b in boundaries if 0 < b < len(buffer))
    if not marks:
        return "".join(buffer)

    parts: list[str] = []
    for index, fragment in enumerate(buffer):
        if index in marks:
            parts.append(delimiter * marks[index])
        parts.append(fragment)
    return "".join(parts)
