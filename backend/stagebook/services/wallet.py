# backend/stagebook/services/wallet.py
"""
Wallet ledger for artists and planners.

The ledger (wallet_transactions) is the audit trail; the wallet_balance column
on the owner row is a cache of "completed credits minus completed debits" kept
in step with it. Every mutation locks the owner row first and writes the
balance and the ledger row in the caller's transaction, so either both writes
land or neither does. Operations that check the available balance before
debiting or reserving also hold `wallet_lock` for the owner, so concurrent
debits against one wallet serialize within a worker as well.

credit, debit and credit_booking_payout run inside the caller's transaction; the
withdrawal, commission and reconciliation operations open their own.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from stagebook.db import end_implicit_transaction
from stagebook.errors import Conflict, InsufficientFunds, NotFound, ValidationError
from stagebook.locks import wallet_lock
from stagebook.models import Artist, Commission, PlannerProfile, WalletTransaction, WithdrawalRequest

logger = logging.getLogger(__name__)

OWNER_MODELS = {"artist": Artist, "planner": PlannerProfile}
ZERO = Decimal("0")


@dataclass(frozen=True)
class WalletOwner:
    kind: str
    ref: int

    def __post_init__(self):
        if self.kind not in OWNER_MODELS:
            raise ValidationError(f"Unknown wallet owner type: {self.kind}")

    def __str__(self):
        return f"{self.kind}:{self.ref}"


@dataclass(frozen=True)
class CommissionSplit:
    percent: Decimal
    commission_value: Decimal
    net_credit: Decimal


def _dec(value) -> Decimal:
    return Decimal(str(value or 0))


def _to_amount(amount) -> Decimal:
    value = Decimal(str(amount))
    if value <= 0:
        raise ValidationError("Amount must be greater than zero")
    return value


async def _load_owner(session: AsyncSession, owner: WalletOwner, for_update: bool = False):
    model = OWNER_MODELS[owner.kind]
    q = select(model).where(model.id == owner.ref)
    if for_update:
        q = q.with_for_update().execution_options(populate_existing=True)
    res = await session.execute(q)
    row = res.scalars().first()
    if not row:
        raise NotFound(f"{owner.kind.capitalize()} wallet owner not found")
    return row


async def pending_withdrawal_total(session: AsyncSession, owner: WalletOwner) -> Decimal:
    res = await session.execute(
        select(func.coalesce(func.sum(WithdrawalRequest.amount), 0)).where(
            WithdrawalRequest.owner_type == owner.kind,
            WithdrawalRequest.owner_id == owner.ref,
            WithdrawalRequest.status == "pending",
        )
    )
    return _dec(res.scalar_one())


async def available_balance(session: AsyncSession, owner: WalletOwner, for_update: bool = False) -> Decimal:
    row = await _load_owner(session, owner, for_update=for_update)
    return Decimal(row.wallet_balance or 0) - await pending_withdrawal_total(session, owner)


async def credit(session: AsyncSession, owner: WalletOwner, amount, source: str,
                 reference_id: Optional[str] = None, description: Optional[str] = None,
                 status: str = "completed") -> WalletTransaction:
    """Append a credit; completed credits raise the cached balance immediately."""
    amount = _to_amount(amount)
    row = await _load_owner(session, owner, for_update=True)
    if status == "completed":
        row.wallet_balance = Decimal(row.wallet_balance or 0) + amount
    txn = WalletTransaction(
        owner_id=owner.ref, owner_type=owner.kind, type="credit", amount=amount,
        source=source, reference_id=reference_id, description=description, status=status,
    )
    session.add(txn)
    await session.flush()
    logger.info("wallet %s credited %s (%s, ref=%s)", owner, amount, source, reference_id)
    return txn


async def debit(session: AsyncSession, owner: WalletOwner, amount, source: str,
                reference_id: Optional[str] = None, description: Optional[str] = None) -> WalletTransaction:
    """Debit against the available balance, i.e. net of pending withdrawals."""
    amount = _to_amount(amount)
    row = await _load_owner(session, owner, for_update=True)
    available = Decimal(row.wallet_balance or 0) - await pending_withdrawal_total(session, owner)
    if available < amount:
        raise InsufficientFunds(f"Insufficient balance: available {available}, required {amount}")
    row.wallet_balance = Decimal(row.wallet_balance or 0) - amount
    txn = WalletTransaction(
        owner_id=owner.ref, owner_type=owner.kind, type="debit", amount=amount,
        source=source, reference_id=reference_id, description=description, status="completed",
    )
    session.add(txn)
    await session.flush()
    logger.info("wallet %s debited %s (%s, ref=%s)", owner, amount, source, reference_id)
    return txn


# --- commission -------------------------------------------------------------

async def latest_commission(session: AsyncSession) -> Optional[Commission]:
    res = await session.execute(
        select(Commission).order_by(Commission.created_at.desc(), Commission.id.desc()).limit(1)
    )
    return res.scalars().first()


def round_currency(value: Decimal) -> Decimal:
    return Decimal(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP)


def commission_split(total_price, paid_amount, percent) -> CommissionSplit:
    """
    Commission is charged on the full price but taken out of what was actually
    paid, so an advance payment carries the whole commission.
    """
    percent = _dec(percent)
    if percent < 0 or percent > 100:
        raise ValidationError("Commission percent must be between 0 and 100")
    commission_value = round_currency(_dec(total_price) * percent / 100)
    return CommissionSplit(
        percent=percent,
        commission_value=commission_value,
        net_credit=_dec(paid_amount) - commission_value,
    )


async def credit_booking_payout(session: AsyncSession, artist_id: int, booking_id: int,
                                total_price, paid_amount) -> Optional[WalletTransaction]:
    commission = await latest_commission(session)
    percent = commission.artist_booking_commission if commission else ZERO
    split = commission_split(total_price, paid_amount, percent)
    if split.net_credit <= 0:
        logger.warning(
            "booking %s: commission %s leaves nothing to credit from paid amount %s",
            booking_id, split.commission_value, paid_amount,
        )
        return None
    return await credit(
        session, WalletOwner("artist", artist_id), split.net_credit, "booking",
        reference_id=str(booking_id),
        description=f"Booking {booking_id} payout (commission {split.commission_value} at {split.percent}%)",
    )


async def create_commission(session: AsyncSession, artist_booking_commission, ticket_sell_commission) -> Commission:
    for value in (artist_booking_commission, ticket_sell_commission):
        if Decimal(value) < 0 or Decimal(value) > 100:
            raise ValidationError("Commission percent must be between 0 and 100")
    await end_implicit_transaction(session)
    async with session.begin():
        row = Commission(
            artist_booking_commission=Decimal(artist_booking_commission),
            ticket_sell_commission=Decimal(ticket_sell_commission),
        )
        session.add(row)
        await session.flush()
        return row


async def update_commission(session: AsyncSession, commission_id: int, artist_booking_commission=None,
                            ticket_sell_commission=None) -> Commission:
    await end_implicit_transaction(session)
    async with session.begin():
        res = await session.execute(select(Commission).where(Commission.id == commission_id)
                                    .with_for_update().execution_options(populate_existing=True))
        row = res.scalars().first()
        if not row:
            raise NotFound("Commission not found")
        if artist_booking_commission is not None:
            if not 0 <= Decimal(artist_booking_commission) <= 100:
                raise ValidationError("Commission percent must be between 0 and 100")
            row.artist_booking_commission = Decimal(artist_booking_commission)
        if ticket_sell_commission is not None:
            if not 0 <= Decimal(ticket_sell_commission) <= 100:
                raise ValidationError("Commission percent must be between 0 and 100")
            row.ticket_sell_commission = Decimal(ticket_sell_commission)
        await session.flush()
        return row


# --- withdrawals ------------------------------------------------------------

async def request_withdrawal(session: AsyncSession, owner: WalletOwner, amount,
                             bank_details: Optional[dict] = None) -> WithdrawalRequest:
    """Reserve funds for a payout. The balance itself is only reduced on approval."""
    amount = _to_amount(amount)
    bank_details = bank_details or {}
    await end_implicit_transaction(session)
    async with wallet_lock(owner), session.begin():
        available = await available_balance(session, owner, for_update=True)
        if available < amount:
            raise InsufficientFunds(f"Insufficient balance: available {available}, requested {amount}")
        txn = WalletTransaction(
            owner_id=owner.ref, owner_type=owner.kind, type="debit", amount=amount,
            source="withdraw", description="Withdrawal request", status="pending",
        )
        session.add(txn)
        await session.flush()
        withdrawal = WithdrawalRequest(
            owner_id=owner.ref, owner_type=owner.kind, amount=amount, status="pending",
            account_holder=bank_details.get("account_holder"),
            account_number=bank_details.get("account_number"),
            bank_name=bank_details.get("bank_name"),
            ifsc_code=bank_details.get("ifsc_code"),
            upi_id=bank_details.get("upi_id"),
            transaction_id=txn.id,
        )
        session.add(withdrawal)
        await session.flush()
        txn.reference_id = str(withdrawal.id)
        await session.flush()
        # load server defaults (created_at) while still inside the transaction
        await session.refresh(withdrawal)
        logger.info("withdrawal %s requested by %s for %s", withdrawal.id, owner, amount)
        return withdrawal


async def _lock_pending_withdrawal(session: AsyncSession, withdrawal_id: int) -> WithdrawalRequest:
    res = await session.execute(
        select(WithdrawalRequest).where(WithdrawalRequest.id == withdrawal_id)
        .with_for_update().execution_options(populate_existing=True)
    )
    withdrawal = res.scalars().first()
    if not withdrawal:
        raise NotFound("Withdrawal request not found")
    if withdrawal.status != "pending":
        raise Conflict(f"Withdrawal request is already {withdrawal.status}")
    return withdrawal


async def _linked_transaction(session: AsyncSession, withdrawal: WithdrawalRequest) -> Optional[WalletTransaction]:
    if withdrawal.transaction_id is None:
        return None
    res = await session.execute(
        select(WalletTransaction).where(WalletTransaction.id == withdrawal.transaction_id)
        .with_for_update().execution_options(populate_existing=True)
    )
    return res.scalars().first()


async def process_withdrawal(session: AsyncSession, withdrawal_id: int,
                             admin_note: Optional[str] = None) -> WithdrawalRequest:
    res = await session.execute(
        select(WithdrawalRequest.owner_type, WithdrawalRequest.owner_id).where(WithdrawalRequest.id == withdrawal_id)
    )
    found = res.first()
    if not found:
        raise NotFound("Withdrawal request not found")
    owner = WalletOwner(*found)

    await end_implicit_transaction(session)
    async with wallet_lock(owner), session.begin():
        withdrawal = await _lock_pending_withdrawal(session, withdrawal_id)
        row = await _load_owner(session, owner, for_update=True)
        balance = Decimal(row.wallet_balance or 0)
        if balance < withdrawal.amount:
            raise InsufficientFunds(f"Balance {balance} no longer covers withdrawal of {withdrawal.amount}")
        row.wallet_balance = balance - withdrawal.amount
        txn = await _linked_transaction(session, withdrawal)
        if txn is not None:
            txn.status = "completed"
            txn.admin_note = admin_note or ""
        withdrawal.status = "processed"
        withdrawal.admin_note = admin_note
        await session.flush()
        logger.info("withdrawal %s processed for %s (%s)", withdrawal.id, owner, withdrawal.amount)
        return withdrawal


async def reject_withdrawal(session: AsyncSession, withdrawal_id: int, admin_note: Optional[str]) -> WithdrawalRequest:
    """Rejecting releases the reservation; nothing was deducted, so nothing is credited back."""
    if not admin_note or not admin_note.strip():
        raise ValidationError("An admin note is required to reject a withdrawal")
    await end_implicit_transaction(session)
    async with session.begin():
        withdrawal = await _lock_pending_withdrawal(session, withdrawal_id)
        txn = await _linked_transaction(session, withdrawal)
        if txn is not None:
            txn.status = "failed"
            txn.admin_note = admin_note.strip()
        withdrawal.status = "rejected"
        withdrawal.admin_note = admin_note.strip()
        await session.flush()
        logger.info("withdrawal %s rejected: %s", withdrawal.id, withdrawal.admin_note)
        return withdrawal


async def list_withdrawals(session: AsyncSession, owner: Optional[WalletOwner] = None,
                           status: Optional[str] = None) -> list[WithdrawalRequest]:
    q = select(WithdrawalRequest)
    if owner is not None:
        q = q.where(WithdrawalRequest.owner_type == owner.kind, WithdrawalRequest.owner_id == owner.ref)
    if status:
        q = q.where(WithdrawalRequest.status == status)
    res = await session.execute(q.order_by(WithdrawalRequest.created_at.desc(), WithdrawalRequest.id.desc()))
    return list(res.scalars().all())


# --- reads / reconciliation ---------------------------------------------------

async def ledger_balance(session: AsyncSession, owner: WalletOwner) -> Decimal:
    res = await session.execute(
        select(WalletTransaction.type, func.coalesce(func.sum(WalletTransaction.amount), 0))
        .where(
            WalletTransaction.owner_type == owner.kind,
            WalletTransaction.owner_id == owner.ref,
            WalletTransaction.status == "completed",
        )
        .group_by(WalletTransaction.type)
    )
    totals = {kind: _dec(total) for kind, total in res.all()}
    return totals.get("credit", ZERO) - totals.get("debit", ZERO)


async def reconcile_wallet(session: AsyncSession, owner: WalletOwner, repair: bool = False) -> dict:
    await end_implicit_transaction(session)
    async with session.begin():
        row = await _load_owner(session, owner, for_update=repair)
        cached = Decimal(row.wallet_balance or 0)
        derived = await ledger_balance(session, owner)
        drift = cached - derived
        if drift and repair:
            logger.warning("wallet %s drift %s repaired (cached %s, ledger %s)", owner, drift, cached, derived)
            row.wallet_balance = derived
        return {
            "owner_type": owner.kind,
            "owner_id": owner.ref,
            "cached_balance": cached,
            "ledger_balance": derived,
            "drift": drift,
            "repaired": bool(drift) and repair,
        }


async def wallet_summary(session: AsyncSession, owner: WalletOwner, limit: int = 50) -> dict:
    row = await _load_owner(session, owner)
    pending = await pending_withdrawal_total(session, owner)
    res = await session.execute(
        select(WalletTransaction)
        .where(WalletTransaction.owner_type == owner.kind, WalletTransaction.owner_id == owner.ref)
        .order_by(WalletTransaction.created_at.desc(), WalletTransaction.id.desc())
        .limit(limit)
    )
    balance = Decimal(row.wallet_balance or 0)
    return {
        "balance": balance,
        "pending_amount": pending,
        "available_balance": balance - pending,
        "transactions": list(res.scalars().all()),
    }


async def owners_with_drift(session: AsyncSession) -> list[dict]:
    """Every wallet whose cached balance disagrees with its ledger."""
    drifted = []
    for kind, model in OWNER_MODELS.items():
        res = await session.execute(select(model.id, model.wallet_balance))
        for owner_id, cached in res.all():
            owner = WalletOwner(kind, owner_id)
            derived = await ledger_balance(session, owner)
            if Decimal(cached or 0) != derived:
                drifted.append({"owner": str(owner), "cached": Decimal(cached or 0), "ledger": derived})
    return drifted
