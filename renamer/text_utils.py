"""Edit distance used to score how far a final name moved from a suggestion."""

from __future__ import annotations


def edit_distance(a: str | None, b: str | None) -> int:
    """Return the Levenshtein distance between two strings.

    Comparison is case-sensitive and works on code points; ``None`` is treated
    as the empty string.
    """
    a = a or ""
    b = b or ""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    # Keep the shorter string in the inner loop so the row stays small.
    if len(a) < len(b):
        a, b = b, a

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i] + [0] * len(b)
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current[j] = min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + cost,
            )
        previous = current
    return previous[-1]
