"""
Tests for resource handles and the handle registry.
"""

import pytest
from captions.errors import ResourceReleasedError
from captions.resources import HandleRegistry


@pytest.fixture
def registry():
    return HandleRegistry()


class TestHandle:

    def test_create_and_read(self, registry):
        handle = registry.create("WEBVTT", label="eng:movie.vtt")
        assert handle.read() == "WEBVTT"
        assert handle.handle_id == "caption-handle-1"
        assert registry.live_count == 1

    def test_ids_are_unique(self, registry):
        ids = {registry.create("x").handle_id for _ in range(5)}
        assert len(ids) == 5

    def test_last_detach_releases(self, registry):
        handle = registry.create("x")
        handle.attach()
        handle.attach()
        handle.detach()
        assert not handle.released
        handle.detach()
        assert handle.released
        assert registry.live_count == 0

    def test_read_after_release(self, registry):
        handle = registry.create("x")
        registry.release(handle)
        with pytest.raises(ResourceReleasedError):
            handle.read()

    def test_attach_after_release(self, registry):
        handle = registry.create("x")
        registry.release(handle)
        with pytest.raises(ResourceReleasedError):
            handle.attach()

    def test_detach_after_release_is_noop(self, registry):
        handle = registry.create("x")
        registry.release(handle)
        handle.detach()
        assert registry.released == 1

    def test_context_manager(self, registry):
        with registry.create("x") as handle:
            assert handle.read() == "x"
        assert handle.released


class TestRegistry:
    """Test deterministic release."""

    def test_release_idempotent(self, registry):
        handle = registry.create("x")
        assert registry.release(handle)
        assert not registry.release(handle)
        assert registry.released == 1

    def test_release_all(self, registry):
        handles = [registry.create(str(i)) for i in range(3)]
        assert registry.release_all() == 3
        assert all(h.released for h in handles)
        assert registry.release_all() == 0

    def test_release_all_empty(self, registry):
        assert registry.release_all() == 0

    def test_failing_hook_logged_not_raised(self):
        def explode(handle):
            raise RuntimeError("boom")

        registry = HandleRegistry(on_release=explode)
        handle = registry.create("x")
        assert registry.release(handle)
        assert handle.released
        assert registry.release_failures == 1

    def test_hook_called_once(self):
        seen = []
        registry = HandleRegistry(on_release=seen.append)
        handle = registry.create("x")
        registry.release(handle)
        registry.release_all()
        assert seen == [handle]

    def test_stats(self, registry):
        a = registry.create("a")
        registry.create("b")
        registry.release(a)
        assert registry.stats() == {
            "handles_created": 2,
            "handles_released": 1,
            "handles_live": 1,
            "release_failures": 0,
        }
        assert len(registry) == 1
        assert [h.handle_id for h in registry] == ["caption-handle-2"]
