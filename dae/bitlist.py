"""A list of unsigned integers packed with an arbitrary bit width per unit."""

from __future__ import annotations

from array import array

_WORD_BITS = 16
_WORD_MASK = (1 << _WORD_BITS) - 1


class CompactBitList:
    """Stores units of ``unit_bit_size`` bits each in 16-bit words."""

    def __init__(self, unit_bit_size: int):
        if unit_bit_size < 1:
            raise ValueError(f"unit bit size must be positive: {unit_bit_size}")
        self.unit_bit_size = unit_bit_size
        self._words = array("H")
        self._count = 0

    def _span(self, index: int) -> tuple[int, int]:
        if index < 0:
            raise IndexError(f"negative unit index: {index}")
        start = index * self.unit_bit_size
        return start, start + self.unit_bit_size

    def _grow(self, bit_boundary: int) -> None:
        need = -(-bit_boundary // _WORD_BITS)
        if need > len(self._words):
            self._words.extend([0] * (need - len(self._words)))

    def set(self, index: int, value: int) -> None:
        """Store ``value`` at unit ``index``, growing the list as needed."""
        if value < 0 or value.bit_length() > self.unit_bit_size:
            raise ValueError(f"value {value} exceeds unit bit size")
        start, end = self._span(index)
        self._grow(end)
        pos = start
        while pos < end:
            word, bit = divmod(pos, _WORD_BITS)
            width = min(_WORD_BITS - bit, end - pos)
            chunk_mask = (1 << width) - 1
            cleared = self._words[word] & ~(chunk_mask << bit) & _WORD_MASK
            self._words[word] = cleared | ((value & chunk_mask) << bit)
            value >>= width
            pos += width
        self._count = max(self._count, index + 1)

    def get(self, index: int) -> int:
        """Return the value at unit ``index``; 0 if beyond the stored words."""
        start, end = self._span(index)
        if len(self._words) * _WORD_BITS < end:
            return 0
        value = 0
        shift = 0
        pos = start
        while pos < end:
            word, bit = divmod(pos, _WORD_BITS)
            width = min(_WORD_BITS - bit, end - pos)
            value |= ((self._words[word] >> bit) & ((1 << width) - 1)) << shift
            shift += width
            pos += width
        return value

    def append(self, value: int) -> None:
        """Store ``value`` right after the highest unit set so far."""
        self.set(self._count, value)

    def tighten(self) -> None:
        """Release storage reserved beyond the words in use."""
        self._words = array("H", self._words)

    def __len__(self) -> int:
        return self._count