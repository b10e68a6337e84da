# payrecon/core/matching.py

"""
Core payer matching engine.

Decides which account a payer string belongs to:
1. Normalize the payer text
2. Alias lookup (learned from earlier confirmations), bypassing scoring
3. Score every account, keep the top N
4. Classify into auto / review / conflict / no_match

Pure: persisting the result is the caller's job.
"""

from typing import Any, Iterable, Optional, Sequence
import hashlib

from payrecon.core.aliases import AliasSnapshot
from payrecon.core.normalizers import normalize, to_account_record
from payrecon.core.scoring import top_candidates
from payrecon.models import (
    AccountRecord,
    MatchCandidate,
    MatchDecision,
    MatchPolicy,
    MatchResult,
)


def build_accounts(accounts: Iterable[Any]) -> list[AccountRecord]:
    """
    Turn the accounts source into AccountRecords.

    Accepts AccountRecords or dicts with id/display_name (or name).
    """
    records: list[AccountRecord] = []
    for account in accounts:
        if isinstance(account, AccountRecord):
            records.append(account)
            continue
        account_id = account.get("id") or account.get("account_id")
        if not account_id:
            continue
        name = account.get("display_name") or account.get("name") or ""
        records.append(to_account_record(account_id, name))
    return records


def match(
    payer_raw: str,
    accounts: Sequence[AccountRecord],
    aliases: Optional[AliasSnapshot] = None,
    policy: Optional[MatchPolicy] = None,
) -> MatchResult:
    """Match one payer string against the known accounts."""
    policy = policy or MatchPolicy.from_settings()
    payer = normalize(payer_raw)

    # ============================================
    # Empty payer: cannot match
    # ============================================
    if payer.is_empty:
        return MatchResult(
            decision="no_match",
            explanation="Empty payer name",
            reason="empty_payer",
        )

    # ============================================
    # Alias hit: scoring bypassed
    # ============================================
    alias = aliases.lookup(payer.normalized) if aliases is not None else None
    if alias is not None:
        display_name = alias.target_raw or alias.target_id
        for account in accounts:
            if account.account_id == alias.target_id:
                display_name = account.display_name
                break
        return MatchResult(
            account_id=alias.target_id,
            decision="auto",
            score=100,
            candidates=[MatchCandidate(account_id=alias.target_id, display_name=display_name, score=100)],
            explanation=f"Alias hit: {payer.normalized} -> {alias.target_id}",
            reason="alias",
            payer_key=payer.normalized,
        )

    # ============================================
    # Score against every account
    # ============================================
    candidates = top_candidates(payer.normalized, payer.tokens, accounts, policy.top_n)
    decision, rule = classify(candidates, policy)

    top1 = candidates[0] if candidates else None
    account_id = None
    reason = None
    if decision == "auto" and top1 is not None:
        account_id = top1.account_id
        reason = "exact" if top1.score == 100 else "fuzzy"

    return MatchResult(
        account_id=account_id,
        decision=decision,
        score=top1.score if top1 else 0,
        candidates=candidates,
        explanation=_explain(candidates, rule),
        reason=reason,
        payer_key=payer.normalized,
    )


def classify(
    candidates: Sequence[MatchCandidate],
    policy: MatchPolicy,
) -> tuple[MatchDecision, str]:
    """
    Classify scored candidates. Returns (decision, rule that fired).

    Every input lands in exactly one decision.
    """
    score1 = candidates[0].score if candidates else 0
    has_second = len(candidates) > 1
    score2 = candidates[1].score if has_second else 0
    gap = score1 - score2

    if score1 < policy.review_threshold:
        return "no_match", f"top score {score1} < {policy.review_threshold}"

    if score1 >= policy.auto_threshold and (not has_second or gap >= policy.auto_gap):
        if has_second:
            return "auto", f"top score {score1} >= {policy.auto_threshold}, gap {gap} >= {policy.auto_gap}"
        return "auto", f"top score {score1} >= {policy.auto_threshold}, single candidate"

    if has_second and score2 >= policy.review_threshold and gap < policy.conflict_gap:
        return "conflict", (
            f"top two scores {score1} and {score2} >= {policy.review_threshold}, "
            f"gap {gap} < {policy.conflict_gap}"
        )

    if score1 >= policy.auto_threshold:
        return "review", f"top score {score1} but gap {gap} < {policy.auto_gap}"
    return "review", f"top score {score1} in [{policy.review_threshold}, {policy.auto_threshold})"


def suggest(
    payer_text: str,
    accounts: Sequence[AccountRecord],
    top_n: int = 5,
) -> list[MatchCandidate]:
    """Candidate accounts for a partially typed payer name."""
    payer = normalize(payer_text)
    if payer.is_empty:
        return []
    return top_candidates(payer.normalized, payer.tokens, accounts, top_n)


def make_payment_id(tenant_id: str, batch_id: str, *parts: Any) -> str:
    """
    Stable payment id from the row identity.

    Re-running the same batch yields the same ids, so upserts do not
    create duplicate records.
    """
    payload = "|".join([tenant_id, batch_id] + ["" if p is None else str(p) for p in parts])
    return "pay_" + hashlib.sha256(payload.encode("utf-8")).hexdigest()[:24]


def _explain(candidates: Sequence[MatchCandidate], rule: str) -> str:
    if not candidates:
        return f"No candidates; {rule}"
    scores = ", ".join(f"{c.account_id}={c.score}" for c in candidates)
    return f"Scores [{scores}]; {rule}"
