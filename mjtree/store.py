"""
Attribute Store - mutable text and numeric array cells

Element records keep only fixed-size values inline. Names, class names, info
strings and user data live in cells owned by the store and are addressed with
CellRef handles that stay valid until the store is closed.
"""
from __future__ import annotations

import itertools
import logging
from typing import Any, Iterable, List, NamedTuple, Optional, Tuple

import numpy as np

from .errors import InvalidReference

logger = logging.getLogger(__name__)

_STORE_TOKENS = itertools.count(1)

TEXT = "text"
ARRAY = "array"


class CellRef(NamedTuple):
    """Opaque handle to one cell of an AttributeStore."""

    store: int
    kind: str
    index: int


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


def _as_array(values: Optional[Iterable[Any]], length: Optional[int]) -> np.ndarray:
    if values is None:
        array = np.zeros(0, dtype=np.float64)
    else:
        array = np.array(values, dtype=np.float64).reshape(-1)
    if length is None:
        return array
    if length < 0:
        raise ValueError(f"array length must be non-negative, got {length}")
    if length > array.shape[0]:
        raise ValueError(
            f"array length {length} exceeds the {array.shape[0]} values provided"
        )
    return array[:length].copy()


class AttributeStore:
    """Owns every text and array cell referenced by the elements of one tree."""

    def __init__(self) -> None:
        self._token = next(_STORE_TOKENS)
        self._texts: List[str] = []
        self._arrays: List[np.ndarray] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return len(self._texts) + len(self._arrays)

    def _check(self, ref: Any, kind: str) -> int:
        if self._closed:
            raise InvalidReference("attribute store has been closed")
        if not isinstance(ref, CellRef) or ref.store != self._token:
            raise InvalidReference(f"{ref!r} does not belong to this attribute store")
        if ref.kind != kind:
            raise InvalidReference(f"{ref!r} is not a {kind} cell")
        table = self._texts if kind == TEXT else self._arrays
        if not 0 <= ref.index < len(table):
            raise InvalidReference(f"{ref!r} is out of range")
        return ref.index

    def allocate_text(self, initial: Any = "") -> CellRef:
        if self._closed:
            raise InvalidReference("attribute store has been closed")
        self._texts.append(_as_text(initial))
        return CellRef(self._token, TEXT, len(self._texts) - 1)

    def set_text(self, ref: CellRef, value: Any) -> None:
        index = self._check(ref, TEXT)
        self._texts[index] = _as_text(value)

    def get_text(self, ref: CellRef) -> str:
        return self._texts[self._check(ref, TEXT)]

    def allocate_array(
        self, initial: Optional[Iterable[Any]] = None, length: Optional[int] = None
    ) -> CellRef:
        if self._closed:
            raise InvalidReference("attribute store has been closed")
        self._arrays.append(_as_array(initial, length))
        return CellRef(self._token, ARRAY, len(self._arrays) - 1)

    def set_array(
        self, ref: CellRef, values: Optional[Iterable[Any]], length: Optional[int] = None
    ) -> None:
        index = self._check(ref, ARRAY)
        self._arrays[index] = _as_array(values, length)

    def get_array(self, ref: CellRef) -> Tuple[np.ndarray, int]:
        """Return a copy of the cell contents and its length."""
        array = self._arrays[self._check(ref, ARRAY)]
        return array.copy(), int(array.shape[0])

    def close(self) -> None:
        """Drop every cell; all outstanding refs become invalid at once."""
        if self._closed:
            return
        logger.debug(
            "Closing attribute store %d (%d text, %d array cells)",
            self._token,
            len(self._texts),
            len(self._arrays),
        )
        self._texts.clear()
        self._arrays.clear()
        self._closed = True
