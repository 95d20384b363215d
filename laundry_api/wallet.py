# laundry_api/wallet.py

from datetime import datetime
from sqlalchemy import update
from sqlmodel import Session, select
from laundry_api.db import conditional_update, money
from laundry_api.errors import (
    InsufficientBalance, InvalidWithdrawalTransition, WithdrawalNotFound, WrongActorRole
)
from laundry_api.models import (
    Principal, Role, Wallet, WalletRead, WalletTransaction, TransactionKind,
    WithdrawalRequest, WithdrawalCreate, WithdrawalBucket, WithdrawalStatus, utcnow
)
from laundry_api.utils import ledger_day, round_money
import logging

logger = logging.getLogger(__name__)

EARNING_ROLES = (Role.VENDOR, Role.DELIVERY_PARTNER)


def _bucket_column(bucket: WithdrawalBucket):
    if bucket == WithdrawalBucket.TODAY:
        return Wallet.todays_earnings
    return Wallet.withdrawable_balance


def open_wallet(session: Session, actor_id: int, role: Role, now: datetime|None = None) -> Wallet:
    """
    Fetch (or create) an actor's wallet and roll it over to the current day.

    Rollover is lazy: when the wallet's ledger day is behind today, whatever is
    left in `todays_earnings` moves into `withdrawable_balance`. The guard on
    `ledger_day` makes a concurrent second rollover a no-op. Does not commit.
    """
    now = now or utcnow()
    today = ledger_day(now)
    wallet = session.exec(
        select(Wallet).where(Wallet.actor_id == actor_id, Wallet.role == role)
    ).first()
    if wallet is None:
        wallet = Wallet(actor_id=actor_id, role=role, ledger_day=today, updated_at=now)
        session.add(wallet)
        session.flush()
        return wallet

    if wallet.ledger_day < today:
        wallet_id = wallet.id
        moved = conditional_update(
            session,
            update(Wallet)
            .where(Wallet.id == wallet_id, Wallet.ledger_day < today)
            .values(
                withdrawable_balance=money(Wallet.withdrawable_balance + Wallet.todays_earnings),
                todays_earnings=0,
                ledger_day=today,
                updated_at=now,
            ),
        )
        if moved:
            logger.info(f"Rolled wallet {wallet_id} ({role.value} {actor_id}) over to {today}.")
        wallet = session.get(Wallet, wallet_id)
    return wallet


def credit(
    session: Session,
    actor_id: int,
    role: Role,
    amount: float,
    order_id: int|None = None,
    note: str|None = None,
    now: datetime|None = None,
) -> Wallet:
    """Add earnings to today's bucket. Runs inside the caller's transaction."""
    now = now or utcnow()
    amount = round_money(amount)
    wallet = open_wallet(session, actor_id, role, now)
    wallet_id = wallet.id
    conditional_update(
        session,
        update(Wallet)
        .where(Wallet.id == wallet_id)
        .values(
            todays_earnings=money(Wallet.todays_earnings + amount),
            total_earnings=money(Wallet.total_earnings + amount),
            updated_at=now,
        ),
    )
    session.add(WalletTransaction(
        wallet_id=wallet_id,
        kind=TransactionKind.CREDIT,
        amount=amount,
        order_id=order_id,
        note=note,
        created_at=now,
    ))
    logger.info(f"Credited {amount} to {role.value} {actor_id} for order {order_id}.")
    return session.get(Wallet, wallet_id)


def get_wallet(session: Session, actor_id: int, role: Role, now: datetime|None = None) -> WalletRead:
    wallet = open_wallet(session, actor_id, role, now)
    session.commit()
    session.refresh(wallet)
    return WalletRead.model_validate(wallet, from_attributes=True)


def wallet_transactions(session: Session, actor_id: int, role: Role) -> list[WalletTransaction]:
    wallet = session.exec(
        select(Wallet).where(Wallet.actor_id == actor_id, Wallet.role == role)
    ).first()
    if wallet is None:
        return []
    return session.exec(
        select(WalletTransaction)
        .where(WalletTransaction.wallet_id == wallet.id)
        .order_by(WalletTransaction.created_at.desc(), WalletTransaction.id.desc())
    ).all()


def request_withdrawal(
    session: Session,
    principal: Principal,
    request: WithdrawalCreate,
    now: datetime|None = None,
) -> WithdrawalRequest:
    """
    Reserve `amount` from the chosen bucket and open a pending payout request.

    The debit is a single guarded UPDATE (`bucket >= amount`), so two requests
    racing for the same funds cannot both be reserved.
    """
    if principal.role not in EARNING_ROLES:
        raise WrongActorRole("Only vendors and delivery partners hold wallets.")
    now = now or utcnow()
    amount = round_money(request.amount)
    wallet = open_wallet(session, principal.actor_id, principal.role, now)
    wallet_id, today = wallet.id, wallet.ledger_day
    column = _bucket_column(request.withdraw_from)

    reserved = conditional_update(
        session,
        update(Wallet)
        .where(Wallet.id == wallet_id, column >= amount)
        .values({
            column: money(column - amount),
            Wallet.total_withdrawn: money(Wallet.total_withdrawn + amount),
            Wallet.updated_at: now,
        }),
    )
    if reserved != 1:
        available = getattr(session.get(Wallet, wallet_id), column.key)
        session.rollback()
        raise InsufficientBalance(
            f"Requested {amount} exceeds the {request.withdraw_from.value} balance.",
            available=available,
            requested=amount,
        )

    withdrawal = WithdrawalRequest(
        actor_id=principal.actor_id,
        role=principal.role,
        amount=amount,
        withdraw_from=request.withdraw_from,
        ledger_day=today,
        upi_id=request.upi_id,
        full_name=request.full_name,
        phone_number=request.phone_number,
        created_at=now,
    )
    session.add(withdrawal)
    session.flush()
    session.add(WalletTransaction(
        wallet_id=wallet_id,
        kind=TransactionKind.WITHDRAWAL,
        amount=-amount,
        withdrawal_id=withdrawal.id,
        note=f"Withdrawal from {request.withdraw_from.value}",
        created_at=now,
    ))
    session.commit()
    session.refresh(withdrawal)
    logger.info(
        f"Withdrawal {withdrawal.id} of {withdrawal.amount} requested by "
        f"{principal.role.value} {principal.actor_id} from {withdrawal.withdraw_from.value}."
    )
    return withdrawal


def _decide(
    session: Session,
    withdrawal_id: int,
    allowed_from: tuple[WithdrawalStatus, ...],
    target: WithdrawalStatus,
    admin_note: str|None,
    now: datetime,
) -> WithdrawalRequest:
    withdrawal = session.get(WithdrawalRequest, withdrawal_id)
    if withdrawal is None:
        raise WithdrawalNotFound(withdrawal_id)
    current = withdrawal.status
    values = {"status": target, "processed_at": now}
    if admin_note is not None:
        values["admin_note"] = admin_note
    moved = conditional_update(
        session,
        update(WithdrawalRequest)
        .where(WithdrawalRequest.id == withdrawal_id, WithdrawalRequest.status.in_(allowed_from))
        .values(**values),
    )
    if moved != 1:
        session.rollback()
        raise InvalidWithdrawalTransition(
            f"Cannot move withdrawal {withdrawal_id} from '{current.value}' to '{target.value}'.",
            current_status=current.value,
            requested=target.value,
        )
    return session.get(WithdrawalRequest, withdrawal_id)


def approve_withdrawal(session: Session, withdrawal_id: int, admin_note: str|None = None,
                       now: datetime|None = None) -> WithdrawalRequest:
    withdrawal = _decide(session, withdrawal_id, (WithdrawalStatus.PENDING,),
                         WithdrawalStatus.APPROVED, admin_note, now or utcnow())
    session.commit()
    session.refresh(withdrawal)
    logger.info(f"Withdrawal {withdrawal_id} approved.")
    return withdrawal


def mark_withdrawal_paid(session: Session, withdrawal_id: int, admin_note: str|None = None,
                         now: datetime|None = None) -> WithdrawalRequest:
    withdrawal = _decide(session, withdrawal_id, (WithdrawalStatus.APPROVED,),
                         WithdrawalStatus.PAID, admin_note, now or utcnow())
    session.commit()
    session.refresh(withdrawal)
    logger.info(f"Withdrawal {withdrawal_id} marked paid.")
    return withdrawal


def reject_withdrawal(session: Session, withdrawal_id: int, admin_note: str|None = None,
                      now: datetime|None = None) -> WithdrawalRequest:
    """
    Reject a pending request and give the reserved funds back.

    Money taken from today's bucket returns there only while the wallet is still
    on the day the request was made; after a rollover it lands in the
    withdrawable balance, where yesterday's earnings now live.
    """
    now = now or utcnow()
    withdrawal = _decide(session, withdrawal_id, (WithdrawalStatus.PENDING,),
                         WithdrawalStatus.REJECTED, admin_note, now)
    wallet = open_wallet(session, withdrawal.actor_id, withdrawal.role, now)
    wallet_id = wallet.id
    if withdrawal.withdraw_from == WithdrawalBucket.TODAY and withdrawal.ledger_day == wallet.ledger_day:
        column = Wallet.todays_earnings
    else:
        column = Wallet.withdrawable_balance
    conditional_update(
        session,
        update(Wallet)
        .where(Wallet.id == wallet_id)
        .values({
            column: money(column + withdrawal.amount),
            Wallet.total_withdrawn: money(Wallet.total_withdrawn - withdrawal.amount),
            Wallet.updated_at: now,
        }),
    )
    session.add(WalletTransaction(
        wallet_id=wallet_id,
        kind=TransactionKind.REFUND,
        amount=withdrawal.amount,
        withdrawal_id=withdrawal_id,
        note="Withdrawal rejected",
        created_at=now,
    ))
    session.commit()
    withdrawal = session.get(WithdrawalRequest, withdrawal_id)
    logger.info(f"Withdrawal {withdrawal_id} rejected; {withdrawal.amount} restored to {column.key}.")
    return withdrawal


def withdrawal_history(session: Session, principal: Principal) -> list[WithdrawalRequest]:
    return session.exec(
        select(WithdrawalRequest)
        .where(WithdrawalRequest.actor_id == principal.actor_id, WithdrawalRequest.role == principal.role)
        .order_by(WithdrawalRequest.created_at.desc(), WithdrawalRequest.id.desc())
    ).all()


def list_withdrawals(session: Session, role: Role|None = None,
                     status: WithdrawalStatus|None = None) -> list[WithdrawalRequest]:
    statement = select(WithdrawalRequest)
    if role is not None:
        statement = statement.where(WithdrawalRequest.role == role)
    if status is not None:
        statement = statement.where(WithdrawalRequest.status == status)
    return session.exec(statement.order_by(WithdrawalRequest.created_at.desc())).all()
