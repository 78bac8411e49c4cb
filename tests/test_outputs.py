import cbor2
import pytest

from chainkeeper.state.outputs import (
    Asset,
    ParsedOutput,
    SplitAddress,
    decode_output,
    split_address,
)
from chainkeeper.state.types import AddressDecodingError, EraCbor
from chainkeeper.wal.model import Era

PAYMENT = bytes(range(28))
STAKE = bytes(range(100, 128))
BASE_ADDRESS = bytes([0x01]) + PAYMENT + STAKE
ENTERPRISE_ADDRESS = bytes([0x61]) + PAYMENT
STAKE_ADDRESS = bytes([0xE1]) + STAKE
POLICY = bytes(range(50, 78))


def test_decode_legacy_output_with_coin():
    body = EraCbor(Era.SHELLEY, cbor2.dumps([BASE_ADDRESS, 1500]))
    parsed = decode_output(body)
    assert parsed == ParsedOutput(Era.SHELLEY, BASE_ADDRESS, 1500, ())


def test_decode_legacy_output_with_assets():
    value = [2000, {POLICY: {b"coin": 7, b"other": 9}}]
    body = EraCbor(Era.MARY, cbor2.dumps([BASE_ADDRESS, value]))
    parsed = decode_output(body)
    assert parsed.coin == 2000
    assert parsed.assets == (
        Asset(POLICY, b"coin", 7),
        Asset(POLICY, b"other", 9),
    )


def test_decode_map_output():
    value = [3000, {POLICY: {b"": 1}}]
    body = EraCbor(Era.BABBAGE, cbor2.dumps({0: ENTERPRISE_ADDRESS, 1: value}))
    parsed = decode_output(body)
    assert parsed.era is Era.BABBAGE
    assert parsed.address == ENTERPRISE_ADDRESS
    assert parsed.assets == (Asset(POLICY, b"", 1),)


def test_decode_byron_output_reencodes_address():
    address = [cbor2.CBORTag(24, b"\x83\x58\x1c" + PAYMENT + b"\xa0\x00"), 12345]
    body = EraCbor(Era.BYRON, cbor2.dumps([address, 100]))
    parsed = decode_output(body)
    assert parsed.address == cbor2.dumps(address)
    assert split_address(parsed.address) == SplitAddress(parsed.address, None, None)


def test_decode_output_rejects_garbage():
    with pytest.raises(ValueError):
        decode_output(EraCbor(Era.SHELLEY, b"\xff\xff"))
    with pytest.raises(ValueError):
        decode_output(EraCbor(Era.SHELLEY, cbor2.dumps([BASE_ADDRESS, "coin"])))
    with pytest.raises(ValueError):
        decode_output(EraCbor(Era.SHELLEY, cbor2.dumps(5)))


def test_split_base_address():
    split = split_address(BASE_ADDRESS)
    assert split == SplitAddress(BASE_ADDRESS, PAYMENT, STAKE)


def test_split_enterprise_address_has_empty_delegation():
    split = split_address(ENTERPRISE_ADDRESS)
    assert split.payment == PAYMENT
    assert split.delegation == b""


def test_split_pointer_address():
    pointer = b"\x81\x00\x02\x03"
    address = bytes([0x41]) + PAYMENT + pointer
    split = split_address(address)
    assert split.payment == PAYMENT
    assert split.delegation == pointer


def test_split_pointer_address_rejects_bad_pointer():
    with pytest.raises(AddressDecodingError):
        split_address(bytes([0x41]) + PAYMENT + b"\x81")


def test_split_stake_address():
    split = split_address(STAKE_ADDRESS)
    assert split == SplitAddress(STAKE_ADDRESS, None, STAKE_ADDRESS)


@pytest.mark.parametrize(
    "address",
    [
        b"",
        BASE_ADDRESS[:40],
        STAKE_ADDRESS + b"\x00",
        bytes([0x90]) + PAYMENT,
        bytes([0x82, 0xff]),
    ],
)
def test_split_rejects_invalid_addresses(address):
    with pytest.raises(AddressDecodingError):
        split_address(address)