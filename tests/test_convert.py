import pytest

from chainkeeper.convert import InvalidArgumentError, bytes_to_hash32


def test_valid_hash_round_trips():
    data = bytes(range(32))
    assert bytes_to_hash32(data) == data


def test_accepts_bytearray_and_memoryview():
    data = bytes(range(32))
    assert bytes_to_hash32(bytearray(data)) == data
    assert bytes_to_hash32(memoryview(data)) == data


@pytest.mark.parametrize("size", [0, 31, 33, 64])
def test_wrong_length_rejected(size):
    with pytest.raises(InvalidArgumentError, match="needs to be 32-bytes long"):
        bytes_to_hash32(b"\x01" * size)


def test_error_is_value_error():
    with pytest.raises(ValueError):
        bytes_to_hash32(b"")