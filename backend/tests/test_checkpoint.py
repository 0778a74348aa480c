"""
Tests for the checkpoint accumulator.
"""
import pytest

from assistant.services.ai.checkpoint import CheckpointAccumulator


def drive(accumulator, deltas):
    """Feed deltas, marking a checkpoint whenever one is due; returns the lengths."""
    checkpoints = []
    for delta in deltas:
        if accumulator.feed(delta):
            checkpoints.append(accumulator.mark_checkpoint())
    return checkpoints


def test_1237_characters_produce_two_checkpoints():
    accumulator = CheckpointAccumulator()

    checkpoints = drive(accumulator, ["x"] * 1237)

    assert checkpoints == [500, 1000]
    assert len(accumulator) == 1237
    assert accumulator.text == "x" * 1237


def test_chunked_deltas_checkpoint_when_crossing_interval():
    accumulator = CheckpointAccumulator()

    checkpoints = drive(accumulator, ["a" * 120] * 10)

    assert checkpoints == [600, 1200]


def test_feed_without_mark_keeps_reporting_due():
    accumulator = CheckpointAccumulator(interval=10)

    assert accumulator.feed("a" * 10) is True
    assert accumulator.feed("b") is True
    accumulator.mark_checkpoint()
    assert accumulator.feed("c") is False
    assert accumulator.last_checkpoint_length == 11


def test_empty_delta_is_ignored():
    accumulator = CheckpointAccumulator(interval=5)

    assert accumulator.feed("") is False
    assert len(accumulator) == 0


def test_interval_must_be_positive():
    with pytest.raises(ValueError):
        CheckpointAccumulator(interval=0)
