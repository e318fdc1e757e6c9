import struct

import pytest

from tabcache.roaring import RoaringBitmap


def _from_values(values):
    bitmap = RoaringBitmap()
    for value in values:
        bitmap.add_range(value, value + 1)
    return bitmap


def test_empty_bitmap_bytes():
    assert RoaringBitmap().to_bytes() == b"\x3a\x30\x00\x00\x00\x00\x00\x00"


def test_range_serializes_as_run_container():
    bitmap = RoaringBitmap()
    bitmap.add_range(1, 10000)
    expected = b"\x3b\x30\x00\x00\x01\x00\x00\x0e\x27\x01\x00\x01\x00\x0e\x27"
    assert bitmap.to_bytes() == expected
    assert RoaringBitmap.from_bytes(expected) == bitmap


def test_range_is_half_open():
    bitmap = RoaringBitmap()
    bitmap.add_range(6001, 10000)
    assert 6001 in bitmap
    assert 9999 in bitmap
    assert 10000 not in bitmap
    assert 6000 not in bitmap
    assert len(bitmap) == 10000 - 6001


def test_range_across_containers_round_trip():
    bitmap = RoaringBitmap()
    bitmap.add_range(65530, 65545)
    assert list(bitmap) == list(range(65530, 65545))
    decoded = RoaringBitmap.from_bytes(bitmap.to_bytes())
    assert list(decoded) == list(range(65530, 65545))


def test_sparse_values_round_trip():
    values = [0, 7, 70000, 4294967295]
    bitmap = _from_values(values)
    decoded = RoaringBitmap.from_bytes(bitmap.to_bytes())
    assert list(decoded) == values
    assert len(decoded) == len(values)


def test_dense_values_round_trip_via_bitmap_container():
    values = list(range(0, 20000, 2))
    bitmap = _from_values(values)
    decoded = RoaringBitmap.from_bytes(bitmap.to_bytes())
    assert decoded == bitmap
    assert len(decoded) == len(values)
    assert 19998 in decoded
    assert 19999 not in decoded


def test_many_run_containers_round_trip_with_offsets():
    bitmap = RoaringBitmap()
    for key in range(5):
        bitmap.add_range(key << 16, (key << 16) + 10)
    decoded = RoaringBitmap.from_bytes(bitmap.to_bytes())
    assert decoded == bitmap
    assert len(decoded) == 50


def test_decodes_array_container_without_runs():
    data = struct.pack("<IIHHIHHH", 12346, 1, 0, 2, 16, 5, 9, 100)
    assert list(RoaringBitmap.from_bytes(data)) == [5, 9, 100]


def test_unknown_cookie_is_rejected():
    with pytest.raises(ValueError):
        RoaringBitmap.from_bytes(struct.pack("<II", 1, 0))


def test_truncated_data_is_rejected():
    bitmap = RoaringBitmap()
    bitmap.add_range(1, 10000)
    with pytest.raises(ValueError):
        RoaringBitmap.from_bytes(bitmap.to_bytes()[:-2])


@pytest.mark.parametrize("start, stop", [(-1, 5), (10, 5), (0, (1 << 32) + 1)])
def test_invalid_range_is_rejected(start, stop):
    with pytest.raises(ValueError):
        RoaringBitmap().add_range(start, stop)


def test_out_of_range_membership_is_false():
    bitmap = RoaringBitmap()
    bitmap.add_range(0, 10)
    assert -1 not in bitmap
    assert (1 << 32) not in bitmap
    assert "3" not in bitmap
    assert 3 in bitmap