"""Lazy attribute resolution for package-level exports."""

from __future__ import annotations

import importlib
from collections.abc import Callable, Iterable


def make_getattr(
    module_name: str,
    export_names: Iterable[str],
    *,
    mapping: dict[str, str],
) -> Callable[[str], object]:
    """Build a module ``__getattr__`` that imports each export on first access.

    ``mapping`` maps every name in ``export_names`` to the module defining it,
    so ``import doclock`` stays cheap and ``doclock.main`` pulls in the CLI
    only when used.
    """
    exports = frozenset(export_names)
    unmapped = sorted(exports.difference(mapping))
    if unmapped:
        raise ValueError(f"no lazy target for: {', '.join(unmapped)}")

    def __getattr__(name: str) -> object:
        if name not in exports:
            raise AttributeError(f"module {module_name!r} has no attribute {name!r}")
        return getattr(importlib.import_module(mapping[name]), name)

    return __getattr__
