"""A compressed set of 32-bit integers stored in the portable roaring format."""

from __future__ import annotations

import struct
from collections.abc import Iterator

_COOKIE_NO_RUN = 12346
_COOKIE_RUN = 12347
_NO_OFFSET_THRESHOLD = 4
_ARRAY_MAX = 4096
_BITMAP_BYTES = 8192
_LOW_MASK = 0xFFFF
_MAX_VALUE = 1 << 32


def _runs(mask: int) -> Iterator[tuple[int, int]]:
    """Yield ``(start, length)`` for each run of set bits in ``mask``."""
    offset = 0
    while mask:
        low = (mask & -mask).bit_length() - 1
        mask >>= low
        offset += low
        length = (mask ^ (mask + 1)).bit_length() - 1
        yield offset, length
        mask >>= length
        offset += length


class _Reader:
    def __init__(self, data: bytes) -> None:
        self._data = memoryview(data)
        self._pos = 0

    def take(self, size: int) -> bytes:
        end = self._pos + size
        if end > len(self._data):
            raise ValueError("roaring bitmap data is truncated")
        chunk = bytes(self._data[self._pos:end])
        self._pos = end
        return chunk

    def uint16(self) -> int:
        return struct.unpack("<H", self.take(2))[0]

    def uint32(self) -> int:
        return struct.unpack("<I", self.take(4))[0]


class RoaringBitmap:
    """A set of unsigned 32-bit integers, one 65536-bit container per high half."""

    __slots__ = ("_containers",)

    def __init__(self) -> None:
        self._containers: dict[int, int] = {}

    @classmethod
    def from_bytes(cls, data: bytes) -> RoaringBitmap:
        """Decode a bitmap from its portable serialized form."""
        reader = _Reader(bytes(data))
        cookie = reader.uint32()
        if cookie & _LOW_MASK == _COOKIE_RUN:
            size = (cookie >> 16) + 1
            flags = reader.take((size + 7) // 8)
            run_flags = [bool(flags[i // 8] >> (i % 8) & 1) for i in range(size)]
            has_run = True
        elif cookie == _COOKIE_NO_RUN:
            size = reader.uint32()
            run_flags = [False] * size
            has_run = False
        else:
            raise ValueError(f"unknown roaring cookie: {cookie}")

        headers = list(struct.iter_unpack("<HH", reader.take(4 * size)))
        if not has_run or size >= _NO_OFFSET_THRESHOLD:
            reader.take(4 * size)

        bitmap = cls()
        for (key, card_minus_one), is_run in zip(headers, run_flags):
            cardinality = card_minus_one + 1
            if is_run:
                count = reader.uint16()
                mask = 0
                for start, length in struct.iter_unpack("<HH", reader.take(4 * count)):
                    if start + length > _LOW_MASK:
                        raise ValueError("run exceeds container bounds")
                    mask |= ((1 << (length + 1)) - 1) << start
            elif cardinality <= _ARRAY_MAX:
                bits = bytearray(_BITMAP_BYTES)
                for (value,) in struct.iter_unpack("<H", reader.take(2 * cardinality)):
                    bits[value >> 3] |= 1 << (value & 7)
                mask = int.from_bytes(bits, "little")
            else:
                mask = int.from_bytes(reader.take(_BITMAP_BYTES), "little")
            if mask:
                bitmap._containers[key] = bitmap._containers.get(key, 0) | mask
        return bitmap

    def to_bytes(self) -> bytes:
        """Encode the bitmap in the portable serialized form."""
        keys = sorted(self._containers)
        entries = []
        for key in keys:
            mask = self._containers[key]
            cardinality = mask.bit_count()
            runs = list(_runs(mask))
            run_size = 2 + 4 * len(runs)
            plain_size = 2 * cardinality if cardinality <= _ARRAY_MAX else _BITMAP_BYTES
            if run_size < plain_size:
                flat = [part for start, length in runs for part in (start, length - 1)]
                payload = struct.pack(f"<H{len(flat)}H", len(runs), *flat)
                is_run = True
            elif cardinality <= _ARRAY_MAX:
                values = [v for start, length in runs for v in range(start, start + length)]
                payload = struct.pack(f"<{len(values)}H", *values)
                is_run = False
            else:
                payload = mask.to_bytes(_BITMAP_BYTES, "little")
                is_run = False
            entries.append((key, cardinality, is_run, payload))

        size = len(entries)
        has_run = any(is_run for _, _, is_run, _ in entries)
        out = bytearray()
        if has_run:
            out += struct.pack("<I", _COOKIE_RUN | ((size - 1) << 16))
            flags = bytearray((size + 7) // 8)
            for position, (_, _, is_run, _) in enumerate(entries):
                if is_run:
                    flags[position // 8] |= 1 << (position % 8)
            out += flags
        else:
            out += struct.pack("<II", _COOKIE_NO_RUN, size)
        for key, cardinality, _, _ in entries:
            out += struct.pack("<HH", key, cardinality - 1)
        if not has_run or size >= _NO_OFFSET_THRESHOLD:
            offset = len(out) + 4 * size
            for _, _, _, payload in entries:
                out += struct.pack("<I", offset)
                offset += len(payload)
        for _, _, _, payload in entries:
            out += payload
        return bytes(out)

    def add_range(self, start: int, stop: int) -> None:
        """Add every integer in ``[start, stop)``."""
        if not 0 <= start <= stop <= _MAX_VALUE:
            raise ValueError(f"invalid range [{start}, {stop})")
        if start == stop:
            return
        last = stop - 1
        first_key, last_key = start >> 16, last >> 16
        for key in range(first_key, last_key + 1):
            low = start & _LOW_MASK if key == first_key else 0
            high = last & _LOW_MASK if key == last_key else _LOW_MASK
            mask = ((1 << (high - low + 1)) - 1) << low
            self._containers[key] = self._containers.get(key, 0) | mask

    def __contains__(self, value: object) -> bool:
        if not isinstance(value, int) or not 0 <= value < _MAX_VALUE:
            return False
        mask = self._containers.get(value >> 16, 0)
        return bool(mask >> (value & _LOW_MASK) & 1)

    def __len__(self) -> int:
        return sum(mask.bit_count() for mask in self._containers.values())

    def __iter__(self) -> Iterator[int]:
        for key in sorted(self._containers):
            base = key << 16
            for start, length in _runs(self._containers[key]):
                yield from range(base + start, base + start + length)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RoaringBitmap):
            return NotImplemented
        return self._containers == other._containers

    def __repr__(self) -> str:
        return f"RoaringBitmap(cardinality={len(self)})"