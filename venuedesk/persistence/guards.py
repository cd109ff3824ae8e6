from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class AccountPredicateError(RuntimeError):
    # Surface missing account predicates on account-scoped queries.
    message: str


def require_account_id(account_id: str | None) -> str:
    # Account-scoped queries must never run without an account filter.
    if not account_id:
        raise AccountPredicateError("Account predicate required but account_id is missing")
    return account_id


def account_predicate(model, account_id: str | None) -> object:
    # Build account predicates through a single helper to guarantee guard coverage.
    return model.account_id == require_account_id(account_id)
