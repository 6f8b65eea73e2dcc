"""Tests for chatsync.registry."""

from __future__ import annotations

from chatsync.models import MessageHandle
from chatsync.registry import MessageRegistry


class TestGetOrCreate:
    def test_creates_empty_handle(self):
        registry = MessageRegistry()
        handle = registry.get_or_create(10)
        assert isinstance(handle, MessageHandle)
        assert handle.sequence_number == 10
        assert handle.headers is None
        assert handle.body is None
        assert handle.completed is False

    def test_is_idempotent(self):
        registry = MessageRegistry()
        first = registry.get_or_create(10)
        first.headers = b"From: a@x\r\n\r\n"
        second = registry.get_or_create(10)
        assert second is first
        assert len(registry) == 1

    def test_distinct_sequence_numbers(self):
        registry = MessageRegistry()
        registry.get_or_create(10)
        registry.get_or_create(11)
        assert registry.pending == frozenset({10, 11})
        assert 10 in registry
        assert 12 not in registry


class TestMarkComplete:
    def test_removes_handle(self):
        registry = MessageRegistry()
        registry.get_or_create(10)
        registry.mark_complete(10)
        assert 10 not in registry
        assert registry.is_empty()

    def test_twice_is_same_as_once(self):
        registry = MessageRegistry()
        registry.get_or_create(10)
        registry.get_or_create(11)
        registry.mark_complete(10)
        registry.mark_complete(10)
        assert registry.pending == frozenset({11})
        assert not registry.is_empty()

    def test_unknown_sequence_number_is_noop(self):
        registry = MessageRegistry()
        registry.mark_complete(99)
        assert registry.is_empty()


class TestIsEmpty:
    def test_new_registry_is_empty(self):
        assert MessageRegistry().is_empty()

    def test_empty_iff_all_created_handles_completed(self):
        registry = MessageRegistry()
        for seq in (1, 2, 3):
            registry.get_or_create(seq)
        for seq in (1, 2):
            registry.mark_complete(seq)
            assert not registry.is_empty()
        registry.mark_complete(3)
        assert registry.is_empty()

    def test_recreated_after_completion(self):
        registry = MessageRegistry()
        registry.get_or_create(5)
        registry.mark_complete(5)
        registry.get_or_create(5)
        assert not registry.is_empty()
