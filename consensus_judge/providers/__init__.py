"""Judge provider registry, keyed by provider kind."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .base import JudgeProvider

_REGISTRY: dict[str, type] = {}


def register_provider(kind: str, cls: type) -> None:
    _REGISTRY[kind] = cls


def provider_class(kind: str) -> type["JudgeProvider"]:
    if kind not in _REGISTRY:
        available = ", ".join(_REGISTRY) or "(none)"
        raise KeyError(f"Unknown provider kind {kind!r}. Available: {available}")
    return _REGISTRY[kind]


def available_kinds() -> list[str]:
    return list(_REGISTRY)
