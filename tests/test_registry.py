"""Tests for InstanceRegistry — the keyed instance store."""

import logging

import pytest

from podstate import DuplicateBindingError, InstanceRegistry


class TestSingleton:
    def test_created_lazily_once(self):
        calls = []
        reg = InstanceRegistry()

        def factory():
            calls.append(1)
            return object()

        assert reg.register_singleton("a", factory) is True
        assert calls == []
        first = reg.get("a")
        assert reg.get("a") is first
        assert calls == [1]

    def test_same_binding_is_noop(self):
        reg = InstanceRegistry()
        factory = object
        reg.register_singleton("a", factory)
        assert reg.register_singleton("a", factory) is False
        assert len(reg) == 1

    def test_different_binding_raises(self):
        reg = InstanceRegistry()
        reg.register_singleton("a", object)
        with pytest.raises(DuplicateBindingError) as info:
            reg.register_singleton("a", dict)
        assert info.value.key == "a"

    def test_explicit_binding_token(self):
        reg = InstanceRegistry()
        token = object()
        reg.register_singleton("a", lambda: 1, binding=token)
        assert reg.register_singleton("a", lambda: 2, binding=token) is False
        assert reg.get("a") == 1


class TestFactory:
    def test_new_instance_every_get(self):
        reg = InstanceRegistry()
        reg.register_factory("a", object)
        assert reg.get("a") is not reg.get("a")

    def test_singleton_and_factory_conflict(self):
        reg = InstanceRegistry()
        reg.register_factory("a", object)
        with pytest.raises(DuplicateBindingError):
            reg.register_singleton("a", object)


class TestUnregister:
    def test_get_missing_raises_key_error(self):
        with pytest.raises(KeyError):
            InstanceRegistry().get("nope")

    def test_unregister_disposes_created_instance(self):
        disposed = []
        reg = InstanceRegistry()
        reg.register_singleton("a", lambda: "inst", dispose=disposed.append)
        reg.get("a")
        reg.unregister("a")
        assert disposed == ["inst"]
        assert not reg.is_registered("a")

    def test_unregister_skips_dispose_when_never_created(self):
        disposed = []
        reg = InstanceRegistry()
        reg.register_singleton("a", lambda: "inst", dispose=disposed.append)
        reg.unregister("a")
        assert disposed == []

    def test_clear_disposes_in_reverse_order(self):
        disposed = []
        reg = InstanceRegistry()
        for key in ("a", "b", "c"):
            reg.register_singleton(key, lambda k=key: k, dispose=disposed.append)
            reg.get(key)
        reg.clear()
        assert disposed == ["c", "b", "a"]
        assert len(reg) == 0

    def test_logs_registration(self, caplog):
        reg = InstanceRegistry()
        with caplog.at_level(logging.DEBUG, logger="podstate.registry"):
            reg.register_singleton("a", object)
            reg.get("a")
        assert "Registered singleton 'a'" in caplog.text
        assert "Created singleton 'a'" in caplog.text
