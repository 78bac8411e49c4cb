import pytest

from chainkeeper.wal.model import (
    ChainPoint,
    Era,
    LogAction,
    LogValue,
    PointNotFoundError,
    RawBlock,
    SlotNotFoundError,
    slot_to_hash,
)


def _block(slot):
    return RawBlock(slot, slot_to_hash(slot), Era.BYRON, slot.to_bytes(8, "big"))


def test_chainpoint_partial_eq():
    assert ChainPoint.origin() == ChainPoint.origin()
    assert ChainPoint(20, slot_to_hash(20)) == ChainPoint(20, slot_to_hash(20))
    assert ChainPoint.origin() != ChainPoint(20, slot_to_hash(20))
    assert ChainPoint(20, slot_to_hash(20)) != ChainPoint(50, slot_to_hash(50))
    assert ChainPoint(50, slot_to_hash(20)) != ChainPoint(50, slot_to_hash(50))


def test_origin_flag():
    assert ChainPoint.origin().is_origin() is True
    assert ChainPoint(3, slot_to_hash(3)).is_origin() is False


def test_slot_to_hash_shape_and_determinism():
    assert len(slot_to_hash(7)) == 32
    assert slot_to_hash(7) == slot_to_hash(7)
    assert slot_to_hash(7) != slot_to_hash(8)


def test_slot_to_hash_truncates_to_32_bits():
    assert slot_to_hash(2**32 + 5) == slot_to_hash(5)


def test_chainpoint_rejects_partial_values():
    with pytest.raises(ValueError):
        ChainPoint(5, None)
    with pytest.raises(ValueError):
        ChainPoint(None, slot_to_hash(5))


def test_chainpoint_rejects_bad_hash_length():
    with pytest.raises(ValueError):
        ChainPoint(5, b"\x00" * 31)


def test_chainpoint_normalizes_hash_to_bytes():
    point = ChainPoint(5, bytearray(slot_to_hash(5)))
    assert point == ChainPoint(5, slot_to_hash(5))


def test_raw_block_point():
    block = _block(11)
    assert block.point() == ChainPoint(11, slot_to_hash(11))


def test_log_value_points():
    block = _block(30)
    assert LogValue.apply(block).point() == block.point()
    assert LogValue.undo(block).point() == block.point()
    assert LogValue.mark(ChainPoint.origin()).point() == ChainPoint.origin()


def test_log_value_equality():
    block = _block(30)
    assert LogValue.apply(block) == LogValue.apply(_block(30))
    assert LogValue.apply(block) != LogValue.undo(block)
    assert LogValue.mark(ChainPoint.origin()) == LogValue.mark(ChainPoint.origin())
    assert LogValue.mark(block.point()) != LogValue.apply(block)


def test_log_value_actions():
    block = _block(1)
    assert LogValue.apply(block).action is LogAction.APPLY
    assert LogValue.undo(block).action is LogAction.UNDO
    assert LogValue.mark(block.point()).action is LogAction.MARK


def test_log_value_validation():
    with pytest.raises(ValueError):
        LogValue(LogAction.MARK)
    with pytest.raises(ValueError):
        LogValue(LogAction.APPLY, target=ChainPoint.origin())


def test_errors_carry_details():
    point = ChainPoint(20, slot_to_hash(20))
    err = PointNotFoundError(point)
    assert err.point == point
    assert "point not found" in str(err)
    assert SlotNotFoundError(42).slot == 42