import pytest

from app.modules.permissions.bitfield_cache import ActionBitfieldCache
from app.modules.permissions.keys import user_prefix
from app.modules.permissions.schemas import Action, PermissionCheckRequest


def make(action="View", **overrides):
    fields = {"user_id": "u1", "tenant_id": "t1", "resource_type": "documents", "action": action}
    fields.update(overrides)
    return PermissionCheckRequest.build(**fields)


@pytest.fixture
def cache(clock):
    return ActionBitfieldCache(default_ttl=300, max_entries=100, clock=clock)


class TestActionBitfieldCache:
    """One entry per resource, one bit per action"""

    def test_each_action_has_its_own_bit(self):
        bits = [a.bit for a in Action]
        assert len(set(bits)) == len(Action)
        assert Action.VIEW.bit == 1

    def test_unknown_action_is_a_miss_even_when_entry_exists(self, cache):
        cache.set(make("View"), True)
        assert cache.get(make("View")) is True
        assert cache.get(make("Delete")) is None

    def test_denied_bit_is_cached(self, cache):
        cache.set(make("Delete"), False)
        assert cache.get(make("Delete")) is False

    def test_actions_share_one_entry(self, cache):
        for action in Action:
            cache.set(make(action.value), action in (Action.VIEW, Action.UPDATE))
        assert len(cache) == 1
        decoded = cache.decode(make())
        assert decoded[Action.VIEW] is True
        assert decoded[Action.UPDATE] is True
        assert decoded[Action.MANAGE] is False
        assert len(decoded) == len(Action)

    def test_bit_can_flip(self, cache):
        cache.set(make("Update"), True)
        cache.set(make("Update"), False)
        assert cache.get(make("Update")) is False

    def test_invalidate_single_action(self, cache):
        cache.set(make("View"), True)
        cache.set(make("Delete"), True)
        assert cache.invalidate_action(make("Delete")) is True
        assert cache.get(make("Delete")) is None
        assert cache.get(make("View")) is True

    def test_invalidating_last_bit_drops_entry(self, cache):
        cache.set(make("View"), True)
        cache.invalidate_action(make("View"))
        assert len(cache) == 0
        assert cache.invalidate_action(make("View")) is False

    def test_bits_expire_with_their_entry(self, cache, clock):
        cache.set(make("View"), True)
        clock.advance(200)
        cache.set(make("Delete"), True)
        clock.advance(100)
        assert cache.get(make("View")) is None
        assert cache.get(make("Delete")) is None

    def test_tenants_and_instances_are_separate_entries(self, cache):
        cache.set(make("View"), True)
        assert cache.get(make("View", tenant_id="t2")) is None
        assert cache.get(make("View", resource_id="d1")) is None
        assert cache.get(make("View", tenant_id=None)) is None

    def test_prefix_invalidation(self, cache):
        cache.set(make("View"), True)
        cache.set(make("View", tenant_id="t2"), True)
        cache.set(make("View", user_id="u2"), True)
        assert cache.invalidate(user_prefix("u1", "t1")) == 1
        assert cache.invalidate(user_prefix("u1")) == 1
        assert cache.get(make("View", user_id="u2")) is True

    def test_stats_count_cached_actions(self, cache):
        cache.set(make("View"), True)
        cache.set(make("Delete"), False)
        stats = cache.stats()
        assert stats["size"] == 1
        assert stats["cached_actions"] == 2
