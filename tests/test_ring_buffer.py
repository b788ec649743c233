"""Tests for the fixed-capacity ring buffer."""

from __future__ import annotations

import pytest

from appwatch.services.ring_buffer import DEFAULT_CAPACITY, RingBuffer


def test_default_capacity():
    assert RingBuffer().capacity == DEFAULT_CAPACITY == 1000


def test_push_within_capacity_keeps_order():
    buf = RingBuffer(5)
    for i in range(3):
        buf.push(i)
    assert buf.size() == 3
    assert buf.to_list() == [0, 1, 2]


@pytest.mark.parametrize("extra", [1, 4, 25])
def test_overflow_keeps_last_n_items(extra):
    buf = RingBuffer(10)
    items = list(range(10 + extra))
    for item in items:
        buf.push(item)

    assert buf.size() == 10
    assert len(buf) == 10
    assert buf.to_list() == items[-10:]


def test_recent_returns_newest_items_oldest_first():
    buf = RingBuffer(4)
    for i in range(6):
        buf.push(i)
    assert buf.recent(2) == [4, 5]
    assert buf.recent(10) == [2, 3, 4, 5]
    assert buf.recent(0) == []


def test_to_list_is_a_copy():
    buf = RingBuffer(3)
    buf.push("a")
    snapshot = buf.to_list()
    buf.push("b")
    assert snapshot == ["a"]


def test_clear():
    buf = RingBuffer(3)
    buf.push(1)
    buf.clear()
    assert buf.size() == 0
    assert buf.to_list() == []


def test_capacity_must_be_positive():
    with pytest.raises(ValueError):
        RingBuffer(0)
