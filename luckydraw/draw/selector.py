"""Weighted random selection."""

from __future__ import annotations

import random
from typing import Any, Optional, Protocol, Sequence, TypeVar

T = TypeVar("T")


class RandomSource(Protocol):
    """Anything exposing ``uniform(a, b)`` like :class:`random.Random`."""

    def uniform(self, a: float, b: float) -> float: ...


def select_weighted(
    items: Sequence[tuple[T, float]],
    rng: Optional[RandomSource] = None,
) -> T:
    """Pick one value with probability proportional to its weight.

    Parameters
    ----------
    items : Sequence[tuple[T, float]]
        ``(value, weight)`` pairs in a fixed, stable order. Weights must be
        non-negative and need not be normalised.
    rng : Optional[RandomSource], default: None
        Random source; the ``random`` module is used when omitted. Inject a
        seeded :class:`random.Random` or a stub for deterministic results.

    Returns
    -------
    T
        The selected value.

    Notes
    -----
    A single ``r = uniform(0, total)`` is drawn and the first item whose
    cumulative weight is ``>= r`` wins, so a value landing exactly on a
    boundary resolves to the earlier item. Zero-weight items are never chosen
    while the total is positive. When every weight is zero the first item is
    returned instead of failing.

    Raises
    ------
    ValueError
        If ``items`` is empty or contains a negative weight.
    """

    if not items:
        raise ValueError("items must not be empty")
    weights = [float(weight) for _, weight in items]
    for weight in weights:
        if weight < 0:
            raise ValueError("weights must be non-negative")

    total = sum(weights)
    if total <= 0:
        return items[0][0]

    source: Any = rng if rng is not None else random
    r = source.uniform(0, total)

    cumulative = 0.0
    for index, weight in enumerate(weights):
        if weight == 0:
            continue
        cumulative += weight
        if r <= cumulative:
            return items[index][0]

    # r can exceed the running sum by a rounding error.
    last_positive = max(index for index, weight in enumerate(weights) if weight > 0)
    return items[last_positive][0]


__all__ = ["RandomSource", "select_weighted"]
