# payrecon/core/scoring.py

"""
Similarity scoring between payer and account names.

Token-set ratio (0-100):
- Exact shared tokens (multiset intersection), Dice-style:
  200 * common / (|A| + |B|)
- A leftover initial ("J") matching the first letter of a leftover
  word on the other side ("JUAN") counts as half a shared token
"""

from collections import Counter
from typing import Iterable, Sequence
import math

from payrecon.models import AccountRecord, MatchCandidate

INITIAL_WEIGHT = 0.5


def score(tokens_a: Sequence[str], tokens_b: Sequence[str]) -> int:
    """
    Token-set ratio between two token lists.

    Symmetric, bounded to [0, 100]; an empty side scores 0.
    """
    if not tokens_a or not tokens_b:
        return 0

    count_a = Counter(tokens_a)
    count_b = Counter(tokens_b)

    common = sum((count_a & count_b).values())
    left_a = count_a - count_b
    left_b = count_b - count_a

    initials = _initial_matches(left_a, left_b) + _initial_matches(left_b, left_a)

    ratio = 200 * (common + INITIAL_WEIGHT * initials) / (len(tokens_a) + len(tokens_b))
    return max(0, min(100, _round_half_up(ratio)))


def compute_score(
    payer_norm: str,
    payer_tokens: Sequence[str],
    account: AccountRecord,
) -> int:
    """Score a payer against one account; identical normalized names score 100."""
    if payer_norm and payer_norm == account.normalized:
        return 100
    return score(payer_tokens, account.tokens)


def top_candidates(
    payer_norm: str,
    payer_tokens: Sequence[str],
    accounts: Iterable[AccountRecord],
    top_n: int = 5,
) -> list[MatchCandidate]:
    """
    Score every account and keep the best N.

    Zero scores are dropped. Ordered by score descending, ties broken by
    account id so results are deterministic.
    """
    scored = []
    for account in accounts:
        s = compute_score(payer_norm, payer_tokens, account)
        if s > 0:
            scored.append(MatchCandidate(
                account_id=account.account_id,
                display_name=account.display_name,
                score=s,
            ))

    scored.sort(key=lambda c: (-c.score, c.account_id))
    return scored[:top_n]


def _initial_matches(initials_side: Counter, words_side: Counter) -> int:
    """Pair single-letter tokens with longer words starting with that letter."""
    by_letter: Counter = Counter()
    for word, n in words_side.items():
        if len(word) > 1:
            by_letter[word[0]] += n

    matches = 0
    for token, n in initials_side.items():
        if len(token) == 1:
            matches += min(n, by_letter[token])
    return matches


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))
