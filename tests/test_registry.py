"""Tests for the instance registry and provider factories."""

import pytest

from provx import (
    DependencyCycleError,
    Provider,
    ProviderKeyError,
    get_instance,
    get_instance_count,
)
from provx import _registry


class User(Provider[str]):
    def __init__(self, user_id: int, *, verbose: bool = False) -> None:
        super().__init__(None)
        self.user_id = user_id
        self.verbose = verbose

    async def build(self) -> str:
        return f"user-{self.user_id}"


class Renamed(Provider[int]):
    provider_name = "renamed"

    async def build(self) -> int:
        return 1


class Profile(Provider[str]):
    def __init__(self, user_id: int) -> None:
        super().__init__(None, User.get(user_id))

    async def build(self, user: str) -> str:
        return user.upper()


class Chicken(Provider[str]):
    def __init__(self) -> None:
        super().__init__(None, Egg.get())

    async def build(self, egg: str) -> str:
        return egg


class Egg(Provider[str]):
    def __init__(self) -> None:
        super().__init__(None, Chicken.get())

    async def build(self, chicken: str) -> str:
        return chicken


class TestIdentity:
    def test_same_arguments_same_instance(self):
        assert User.get(1) is User.get(1)

    def test_different_arguments_different_instances(self):
        assert User.get(1) is not User.get(2)

    def test_structurally_equal_arguments_share(self):
        a = get_instance(User, [1])
        b = get_instance(User, (1,))
        assert a is b

    def test_keyword_arguments_are_part_of_the_key(self):
        plain = User.get(1)
        verbose = User.get(1, verbose=True)
        assert plain is not verbose
        assert verbose.verbose is True
        assert User.get(1, verbose=True) is verbose

    def test_factory_is_a_plain_function(self):
        user = User.factory()
        assert user(7) is User.get(7)
        assert user.__name__ == "User"

    def test_dependencies_are_shared_instances(self):
        profile = Profile.get(3)
        assert profile.depends_on == (User.get(3),)

    def test_count_and_clear(self):
        User.get(1)
        User.get(2)
        assert get_instance_count() == 2
        _registry.clear()
        assert get_instance_count() == 0


class TestKeys:
    def test_key_is_assigned(self):
        assert User.get(5).instance_key == f"{User.__module__}.User;[5]"

    def test_provider_name_overrides_class_path(self):
        assert Renamed.get().instance_key == "renamed;[]"

    def test_keyword_order_does_not_matter(self):
        a = _registry.instance_key(User, (1,), {"b": 1, "a": 2})
        b = _registry.instance_key(User, (1,), {"a": 2, "b": 1})
        assert a == b

    def test_argument_order_matters(self):
        assert _registry.instance_key(User, (1, 2)) != _registry.instance_key(User, (2, 1))

    def test_unserializable_arguments_rejected(self):
        with pytest.raises(ProviderKeyError, match="JSON-serializable"):
            User.get(object())

    def test_key_error_is_a_type_error(self):
        with pytest.raises(TypeError):
            User.get({1, 2})


class TestCycles:
    def test_constructor_cycle_detected(self):
        with pytest.raises(DependencyCycleError) as info:
            Chicken.get()
        assert info.value.chain[0] == info.value.chain[-1]
        assert "Chicken" in str(info.value)
        assert "Egg" in str(info.value)

    def test_failed_construction_leaves_no_instance(self):
        with pytest.raises(DependencyCycleError):
            Egg.get()
        assert get_instance_count() == 0
