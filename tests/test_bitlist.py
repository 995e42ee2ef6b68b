import pytest

from dae.bitlist import CompactBitList

V6 = 0b110010
V19 = 0b1110010110010110010


def test_bitlist_6():
    bm = CompactBitList(6)
    bm.set(1, V6)
    assert bm.get(1) == V6
    bm.tighten()
    assert bm.get(1) == V6
    bm.set(13, V6)
    assert bm.get(13) == V6
    bm.tighten()
    assert bm.get(13) == V6
    bm.append(V6)
    assert bm.get(14) == V6
    assert len(bm) == 15
    bm.tighten()
    assert bm.get(14) == V6
    assert bm.get(1) == V6


def test_bitlist_19():
    bm = CompactBitList(19)
    bm.set(1, V19)
    assert bm.get(1) == V19
    bm.tighten()
    assert bm.get(1) == V19
    bm.set(13, V19)
    assert bm.get(13) == V19
    bm.tighten()
    assert bm.get(13) == V19
    bm.append(V19)
    assert bm.get(14) == V19
    bm.tighten()
    bm.set(1, 0b0000000000000000000)
    assert bm.get(1) == 0b0000000000000000000
    bm.set(2, 0b1111111111111111111)
    assert bm.get(2) == 0b1111111111111111111
    assert bm.get(1) == 0b0000000000000000000


def test_unset_units_read_as_zero():
    bm = CompactBitList(7)
    bm.set(3, 0b1010101)
    assert bm.get(0) == 0
    assert bm.get(2) == 0
    assert bm.get(100) == 0


def test_value_too_wide_raises():
    bm = CompactBitList(6)
    with pytest.raises(ValueError):
        bm.set(0, 0b1000000)
    with pytest.raises(ValueError):
        bm.set(0, -1)


def test_negative_index_raises():
    bm = CompactBitList(4)
    with pytest.raises(IndexError):
        bm.set(-1, 1)


def test_invalid_unit_size():
    with pytest.raises(ValueError):
        CompactBitList(0)


@pytest.mark.parametrize("width", [1, 3, 8, 15, 16, 17, 31, 33, 64])
def test_neighbours_are_independent(width):
    bm = CompactBitList(width)
    full = (1 << width) - 1
    values = [full if i % 2 else 0 for i in range(10)]
    for v in values:
        bm.append(v)
    assert [bm.get(i) for i in range(10)] == values
    bm.set(5, 0)
    assert bm.get(4) == 0
    assert bm.get(5) == 0
    assert bm.get(6) == 0
    assert bm.get(7) == full
    assert len(bm) == 10


def test_overwrite_keeps_length():
    bm = CompactBitList(5)
    bm.append(3)
    bm.append(9)
    bm.set(0, 31)
    assert len(bm) == 2
    assert bm.get(0) == 31
    assert bm.get(1) == 9