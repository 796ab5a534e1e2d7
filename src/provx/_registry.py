"""Instance registry — one live provider per (type, arguments) key.

Holds the canonical provider instances for the whole process. Everything
else only references them, so any two consumers asking for the same
provider share one cached value and one build cycle.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any, Mapping, Sequence, TypeVar

from provx._errors import DependencyCycleError, ProviderKeyError

if TYPE_CHECKING:
    from provx.provider import Provider

    P = TypeVar("P", bound=Provider)

logger = logging.getLogger("provx.registry")

instances: dict[str, Provider] = {}

# Keys whose constructor is currently running, outermost first.
_constructing: list[str] = []


def provider_name(provider_type: type) -> str:
    """Stable name for a provider class.

    ``provider_name`` on the class wins; it survives renames and keeps keys
    short. Otherwise the dotted module path and qualified name are used.
    """
    name = getattr(provider_type, "provider_name", None)
    if name:
        return name
    return f"{provider_type.__module__}.{provider_type.__qualname__}"


def instance_key(
    provider_type: type,
    args: Sequence[Any] = (),
    kwargs: Mapping[str, Any] | None = None,
) -> str:
    name = provider_name(provider_type)
    payload: Any = list(args)
    if kwargs:
        payload = [payload, dict(kwargs)]
    try:
        encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    except (TypeError, ValueError) as exc:
        raise ProviderKeyError(
            f"arguments for {name} must be JSON-serializable to key the registry: {exc}"
        ) from exc
    return f"{name};{encoded}"


def get_instance(
    provider_type: type[P],
    args: Sequence[Any] = (),
    kwargs: Mapping[str, Any] | None = None,
) -> P:
    """Return the shared instance for (provider_type, args), creating it once."""
    key = instance_key(provider_type, args, kwargs)
    instance = instances.get(key)
    if instance is not None:
        return instance  # type: ignore[return-value]

    if key in _constructing:
        chain = _constructing[_constructing.index(key):] + [key]
        raise DependencyCycleError(chain)

    logger.debug("creating %s", key)
    _constructing.append(key)
    try:
        instance = provider_type(*args, **(kwargs or {}))
    finally:
        _constructing.pop()
    instance.instance_key = key
    instances[key] = instance
    return instance


def get_instance_count() -> int:
    return len(instances)


def clear() -> None:
    """Forget every instance. Existing references keep working on their own."""
    instances.clear()
    _constructing.clear()
