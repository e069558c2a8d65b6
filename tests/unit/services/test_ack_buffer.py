"""
Tests for the pending acknowledgment buffer
"""

import threading

import pytest

from services.ack_buffer import AckBuffer, merge_ack


class TestMergeAck:

    @pytest.mark.parametrize('current,incoming,expected', [
        (None, 2, 2),
        (3, None, 3),
        (None, None, 0),
        (1, 3, 3),
        (4, 2, 4),
    ])
    def test_merge_never_lowers(self, current, incoming, expected):
        assert merge_ack(current, incoming) == expected


class TestAckBuffer:

    @pytest.fixture
    def buffer(self):
        return AckBuffer(max_entries=3)

    def test_store_merges_with_max(self, buffer):
        key = (1, 'wamid.A')

        assert buffer.store(key, 2) == 2
        assert buffer.store(key, 1) == 2
        assert buffer.store(key, 4) == 4
        assert buffer.peek(key) == 4

    def test_consume_removes_entry(self, buffer):
        buffer.store((1, 'wamid.A'), 3)

        assert buffer.consume((1, 'wamid.A')) == 3
        assert buffer.consume((1, 'wamid.A')) is None
        assert len(buffer) == 0

    def test_keys_are_tenant_specific(self, buffer):
        buffer.store((1, 'shared-id'), 3)

        assert buffer.peek((2, 'shared-id')) is None

    def test_oldest_entry_is_evicted_when_full(self, buffer):
        for index in range(4):
            buffer.store((1, f"m{index}"), 1)

        assert len(buffer) == 3
        assert buffer.peek((1, 'm0')) is None
        assert buffer.peek((1, 'm3')) == 1

    def test_restoring_a_key_refreshes_its_age(self, buffer):
        buffer.store((1, 'm0'), 1)
        buffer.store((1, 'm1'), 1)
        buffer.store((1, 'm2'), 1)
        buffer.store((1, 'm0'), 2)
        buffer.store((1, 'm3'), 1)

        assert buffer.peek((1, 'm0')) == 2
        assert buffer.peek((1, 'm1')) is None

    def test_clear(self, buffer):
        buffer.store((1, 'm0'), 1)
        buffer.clear()
        assert len(buffer) == 0

    def test_rejects_non_positive_capacity(self):
        with pytest.raises(ValueError):
            AckBuffer(max_entries=0)

    def test_concurrent_stores_converge_on_maximum(self):
        buffer = AckBuffer(max_entries=10)
        key = (1, 'wamid.RACE')

        threads = [threading.Thread(target=buffer.store, args=(key, level))
                   for level in (1, 4, 2, 3, 0, 4, 1)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert buffer.peek(key) == 4
