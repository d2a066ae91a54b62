"""Customer loyalty: reward accounts and purchase aggregates."""

from __future__ import annotations

from ..extensions import db
from ..models import Customer, CustomerRewardAccount, CustomerRewardTransaction, Transaction
from ..validation import NotFoundError
from .concurrency import lock_for_update


REWARD_EARN = "EARN"


def get_or_create_reward_account(customer_id: int) -> CustomerRewardAccount:
    account = lock_for_update(
        db.session.query(CustomerRewardAccount).filter_by(customer_id=customer_id)
    ).first()
    if account is None:
        account = CustomerRewardAccount(
            customer_id=customer_id,
            points_balance=0,
            lifetime_points_earned=0,
            lifetime_points_redeemed=0,
        )
        db.session.add(account)
        db.session.flush()
    return account


def record_purchase(txn: Transaction, user_id: int | None = None) -> CustomerRewardTransaction | None:
    """
    Update customer aggregates for a completed sale and credit its points.

    Runs inside the caller's DB transaction (flush only, no commit).
    Returns the EARN ledger row, or None when no points were earned.
    """
    customer = lock_for_update(db.session.query(Customer).filter_by(id=txn.customer_id)).first()
    if not customer:
        raise NotFoundError(f"Customer {txn.customer_id} not found")

    customer.total_spent_cents = (customer.total_spent_cents or 0) + txn.total_cents
    customer.total_purchases = (customer.total_purchases or 0) + 1
    customer.last_purchase_at = txn.completed_at

    if not txn.points_earned:
        db.session.flush()
        return None

    account = get_or_create_reward_account(customer.id)
    account.points_balance += txn.points_earned
    account.lifetime_points_earned += txn.points_earned

    entry = CustomerRewardTransaction(
        reward_account_id=account.id,
        transaction_type=REWARD_EARN,
        points=txn.points_earned,
        transaction_id=txn.id,
        reason=f"Sale {txn.transaction_number}",
        user_id=user_id,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def get_points_balance(customer_id: int) -> int:
    account = db.session.query(CustomerRewardAccount).filter_by(customer_id=customer_id).first()
    return account.points_balance if account else 0
