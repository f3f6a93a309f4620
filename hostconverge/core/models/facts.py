"""
HostFacts — the read-only snapshot of a managed host.

Facts are gathered once at the start of a pass and frozen.  Nested
mappings become read-only proxies and lists become tuples, so no rule
can change what a later rule sees.

Lookup is by dotted path::

    facts["kernel.machine"]                      # nested lookup
    facts["directories./etc/dd-agent/conf.d"]    # key containing dots

At each level the longest literal key wins, then the remainder of the
path is resolved inside it.  Templates read the snapshot through
FactView, which walks attribute access with this same lookup.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from types import MappingProxyType
from typing import Any


class MissingFactError(KeyError):
    """Raised when a dotted fact path does not resolve."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(path)

    def __str__(self) -> str:
        return f"fact '{self.path}' is absent"


_ABSENT = object()


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({str(k): _freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    if isinstance(value, set):
        return frozenset(_freeze(v) for v in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [_thaw(v) for v in value]
    if isinstance(value, frozenset):
        return sorted(_thaw(v) for v in value)
    return value


def _resolve(data: Mapping[str, Any], path: str) -> Any:
    if path in data:
        return data[path]

    parts = path.split(".")
    # Longest prefix first so "conf.d"-style keys beat shorter matches
    for i in range(len(parts) - 1, 0, -1):
        head = ".".join(parts[:i])
        child = data.get(head, _ABSENT)
        if child is _ABSENT or not isinstance(child, Mapping):
            continue
        found = _resolve(child, ".".join(parts[i:]))
        if found is not _ABSENT:
            return found

    return _ABSENT


class HostFacts(Mapping[str, Any]):
    """Immutable mapping of fact name → value."""

    __slots__ = ("_data",)

    def __init__(self, data: Mapping[str, Any] | None = None):
        object.__setattr__(self, "_data", _freeze(data or {}))

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError("HostFacts is immutable")

    def __getitem__(self, path: str) -> Any:
        value = _resolve(self._data, path)
        if value is _ABSENT:
            raise MissingFactError(path)
        return value

    def __contains__(self, path: object) -> bool:
        return isinstance(path, str) and _resolve(self._data, path) is not _ABSENT

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"HostFacts({self.to_dict()!r})"

    def __copy__(self) -> HostFacts:
        return self

    def __deepcopy__(self, memo: dict) -> HostFacts:
        return self

    def __reduce__(self) -> tuple:
        return (HostFacts, (self.to_dict(),))

    def get(self, path: str, default: Any = None) -> Any:
        value = _resolve(self._data, path)
        return default if value is _ABSENT else value

    def to_dict(self) -> dict[str, Any]:
        """Plain, mutable, JSON-friendly copy of the snapshot."""
        return _thaw(self._data)

    def merged(self, overrides: Mapping[str, Any]) -> HostFacts:
        """Return a new snapshot with ``overrides`` deep-merged on top."""
        return HostFacts(deep_merge(self.to_dict(), overrides))


def deep_merge(base: dict[str, Any], overrides: Mapping[str, Any]) -> dict[str, Any]:
    """Recursively merge ``overrides`` into a copy of ``base``."""
    merged = dict(base)
    for key, value in overrides.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, Mapping):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = _thaw(value) if isinstance(value, Mapping) else value
    return merged


def _has_prefix(data: Mapping[str, Any], path: str) -> bool:
    """True when some fact lives below ``path`` (flat or nested)."""
    for key, value in data.items():
        if key.startswith(path + "."):
            return True
        if path.startswith(key + ".") and isinstance(value, Mapping):
            if _has_prefix(value, path[len(key) + 1:]):
                return True
    return False


class FactView:
    """Attribute access over HostFacts for templates.

    ``facts.kernel.machine`` in a template resolves the dotted path
    ``kernel.machine`` with the same lookup predicates use, so flat keys
    (``{"kernel.machine": ...}``) and nested mappings render alike.
    Unknown names raise, which jinja turns into an undefined value.
    """

    __slots__ = ("_facts", "_prefix")

    def __init__(self, facts: HostFacts, prefix: str = ""):
        object.__setattr__(self, "_facts", facts)
        object.__setattr__(self, "_prefix", prefix)

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError("FactView is read-only")

    def _lookup(self, name: str) -> Any:
        path = f"{self._prefix}.{name}" if self._prefix else name
        value = _resolve(self._facts._data, path)
        if value is _ABSENT:
            if not _has_prefix(self._facts._data, path):
                raise KeyError(path)
            return FactView(self._facts, path)
        if isinstance(value, Mapping):
            return FactView(self._facts, path)
        return value

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        try:
            return self._lookup(name)
        except KeyError:
            raise AttributeError(name) from None

    def __getitem__(self, name: str) -> Any:
        return self._lookup(name)

    def __contains__(self, name: object) -> bool:
        if not isinstance(name, str):
            return False
        try:
            self._lookup(name)
        except KeyError:
            return False
        return True

    def __repr__(self) -> str:
        if not self._prefix:
            return repr(self._facts.to_dict())
        return repr(_thaw(self._facts.get(self._prefix)))

    __str__ = __repr__
