"""
String similarity for DPCMatch.

Jaro-Winkler similarity over normalized provider names. The Winkler prefix
boost is applied unconditionally and transpositions are halved exactly, so
scores can differ slightly from libraries that gate the boost on a 0.7 Jaro
floor or floor the transposition count.
"""

import logging
from typing import Iterable, Optional

logger = logging.getLogger(__name__)

WINKLER_PREFIX_SCALE = 0.1
WINKLER_MAX_PREFIX = 4


def jaro_winkler_similarity(a: Optional[str], b: Optional[str],
                            prefix_scale: float = WINKLER_PREFIX_SCALE,
                            max_prefix: int = WINKLER_MAX_PREFIX) -> float:
    """
    Calculate Jaro-Winkler similarity between two strings.

    Args:
        a: First string
        b: Second string
        prefix_scale: Winkler boost per shared leading character
        max_prefix: Maximum shared prefix length that earns a boost

    Returns:
        Similarity in [0, 1]; 1.0 for equal strings, 0.0 when exactly one is empty
    """
    a = a or ""
    b = b or ""

    if a == b:
        return 1.0
    if not a or not b:
        return 0.0

    # Greedy matching depends on argument order; fix it so the score is symmetric
    if b < a:
        a, b = b, a

    len_a, len_b = len(a), len(b)
    window = max(0, max(len_a, len_b) // 2 - 1)

    a_matched = [False] * len_a
    b_matched = [False] * len_b
    matches = 0

    for i, char in enumerate(a):
        start = max(0, i - window)
        end = min(i + window + 1, len_b)
        for j in range(start, end):
            if not b_matched[j] and b[j] == char:
                a_matched[i] = True
                b_matched[j] = True
                matches += 1
                break

    if matches == 0:
        return 0.0

    half_transpositions = 0
    k = 0
    for i in range(len_a):
        if not a_matched[i]:
            continue
        while not b_matched[k]:
            k += 1
        if a[i] != b[k]:
            half_transpositions += 1
        k += 1
    transpositions = half_transpositions / 2

    jaro = (matches / len_a + matches / len_b + (matches - transpositions) / matches) / 3

    prefix = 0
    for char_a, char_b in zip(a[:max_prefix], b[:max_prefix]):
        if char_a != char_b:
            break
        prefix += 1

    return min(1.0, jaro + prefix * prefix_scale * (1 - jaro))


similarity = jaro_winkler_similarity


def best_cross_similarity(lefts: Iterable[Optional[str]], rights: Iterable[Optional[str]]) -> float:
    """
    Best similarity over every pairing of non-empty strings from two groups.

    Used to compare a provider's name and practice name against both names of
    a candidate. Empty entries are skipped so that two missing practice names
    never look like a perfect match.

    Args:
        lefts: Names of the first record
        rights: Names of the second record

    Returns:
        Highest pairwise similarity, or 0.0 if no pair can be formed
    """
    left_names = [name for name in lefts if name]
    right_names = [name for name in rights if name]

    return max(
        (jaro_winkler_similarity(left, right) for left in left_names for right in right_names),
        default=0.0,
    )
