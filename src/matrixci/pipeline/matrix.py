"""Matrix expansion: one ``ToolchainVariant`` per declared toolchain entry."""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from matrixci.domain.models import ToolchainVariant


def expand(
    toolchains: Sequence[str],
    allow_failures: Iterable[str] = (),
) -> tuple[ToolchainVariant, ...]:
    """Expand ``toolchains`` in declared order.

    Duplicates are preserved: ``["stable", "stable"]`` yields two variants, told apart by
    ``ToolchainVariant.index``.
    """

    if isinstance(toolchains, str):
        raise TypeError("toolchains must be a sequence of ids, not a string")
    allowed = frozenset(item.strip() for item in allow_failures)
    return tuple(
        ToolchainVariant(
            toolchain=toolchain,
            allowed_to_fail=toolchain.strip() in allowed,
            index=index,
        )
        for index, toolchain in enumerate(toolchains)
    )


__all__ = ["expand"]
