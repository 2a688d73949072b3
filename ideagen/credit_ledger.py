# ideagen/credit_ledger.py

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ideagen.entities import CreditAccount, LedgerEntry
from ideagen.errors import InsufficientCredits, LedgerUnavailable

logger = logging.getLogger("ideagen")


@dataclass(frozen=True)
class DebitReceipt:
    new_balance: int
    entry_id: str
    replayed: bool = False


@dataclass(frozen=True)
class AccountSnapshot:
    user_id: str
    balance: int
    plan: str
    first_analysis_done: bool = False


class CreditLedgerClient:
    """
    Client side of the credit ledger.

    Every balance mutation happens inside a single transaction that locks the
    account row, so the balance change and its LedgerEntry commit together or
    not at all. Callers must refresh any cached balance from the returned
    receipt, never by subtracting locally.
    """

    def __init__(self, session_factory: sessionmaker):
        self.SessionFactory = session_factory

    def debit(
        self,
        user_id: str,
        feature: str,
        amount: int,
        description: str,
        *,
        item_id: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> DebitReceipt:
        if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
            raise ValueError(f"debit amount must be a positive integer, got {amount!r}")

        session: Session = self.SessionFactory()
        try:
            if idempotency_key:
                replay = self._find_by_key(session, idempotency_key)
                if replay is not None:
                    logger.info(f"[LEDGER] replayed debit key={idempotency_key} user={user_id}")
                    return replay

            account = (
                session.query(CreditAccount)
                    .filter(CreditAccount.user_id == str(user_id))
                    .with_for_update()
                    .one_or_none()
            )
            if account is None:
                raise InsufficientCredits(required=amount, balance=0, feature=feature)
            if account.balance < amount:
                raise InsufficientCredits(required=amount, balance=account.balance, feature=feature)

            account.balance = account.balance - amount
            entry = LedgerEntry(
                user_id=str(user_id),
                kind="debit",
                feature=feature,
                amount=amount,
                description=description or feature,
                item_id=item_id,
                idempotency_key=idempotency_key,
                balance_after=account.balance,
            )
            session.add(entry)
            session.commit()

            logger.info(
                f"[LEDGER] debit user={user_id} feature={feature} amount={amount} "
                f"balance_after={entry.balance_after}"
            )
            return DebitReceipt(new_balance=entry.balance_after, entry_id=entry.id)

        except InsufficientCredits:
            session.rollback()
            raise
        except IntegrityError as e:
            session.rollback()
            # a concurrent request with the same key won the insert
            if idempotency_key:
                replay = self._find_by_key(session, idempotency_key)
                if replay is not None:
                    return replay
            raise LedgerUnavailable(f"Ledger rejected debit: {e}") from e
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"[LEDGER] debit failed user={user_id} feature={feature}: {e}")
            raise LedgerUnavailable(f"Ledger unavailable: {e}") from e
        finally:
            session.close()

    def grant(
        self,
        user_id: str,
        amount: int,
        description: str,
        *,
        plan: Optional[str] = None,
    ) -> DebitReceipt:
        """
        Top up (or open) an account. Logged as a 'grant' entry.
        """
        if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
            raise ValueError(f"grant amount must be a positive integer, got {amount!r}")

        session: Session = self.SessionFactory()
        try:
            account = (
                session.query(CreditAccount)
                    .filter(CreditAccount.user_id == str(user_id))
                    .with_for_update()
                    .one_or_none()
            )
            if account is None:
                account = CreditAccount(user_id=str(user_id), balance=0, plan=plan or "free")
                session.add(account)
            elif plan:
                account.plan = plan

            account.balance = (account.balance or 0) + amount
            entry = LedgerEntry(
                user_id=str(user_id),
                kind="grant",
                feature="credits",
                amount=amount,
                description=description,
                balance_after=account.balance,
            )
            session.add(entry)
            session.commit()
            return DebitReceipt(new_balance=entry.balance_after, entry_id=entry.id)
        except SQLAlchemyError as e:
            session.rollback()
            raise LedgerUnavailable(f"Ledger unavailable: {e}") from e
        finally:
            session.close()

    def claim_first_analysis(self, user_id: str) -> bool:
        """
        Atomically mark the free first analysis as used. Returns True for the
        one caller that flips the flag, False if the account already used it
        or does not exist.
        """
        session: Session = self.SessionFactory()
        try:
            account = (
                session.query(CreditAccount)
                    .filter(CreditAccount.user_id == str(user_id))
                    .with_for_update()
                    .one_or_none()
            )
            if account is None or account.first_analysis_done:
                session.rollback()
                return False
            account.first_analysis_done = True
            session.commit()
            logger.info(f"[LEDGER] free first analysis claimed user={user_id}")
            return True
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"[LEDGER] first-analysis claim failed user={user_id}: {e}")
            raise LedgerUnavailable(f"Ledger unavailable: {e}") from e
        finally:
            session.close()

    def get_account(self, user_id: str) -> Optional[AccountSnapshot]:
        session: Session = self.SessionFactory()
        try:
            account = (
                session.query(CreditAccount)
                    .filter(CreditAccount.user_id == str(user_id))
                    .one_or_none()
            )
            if account is None:
                return None
            return AccountSnapshot(
                user_id=account.user_id,
                balance=account.balance,
                plan=account.plan,
                first_analysis_done=bool(account.first_analysis_done),
            )
        except SQLAlchemyError as e:
            raise LedgerUnavailable(f"Ledger unavailable: {e}") from e
        finally:
            session.close()

    def get_balance(self, user_id: str) -> int:
        account = self.get_account(user_id)
        return account.balance if account else 0

    def list_entries(self, user_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        session: Session = self.SessionFactory()
        try:
            rows = (
                session.query(LedgerEntry)
                    .filter(LedgerEntry.user_id == str(user_id))
                    .order_by(LedgerEntry.created_at.desc())
                    .limit(limit)
                    .all()
            )
            return [
                {
                    "id": r.id,
                    "kind": r.kind,
                    "feature": r.feature,
                    "amount": r.amount,
                    "description": r.description,
                    "item_id": r.item_id,
                    "balance_after": r.balance_after,
                    "created_at": r.created_at.isoformat() if r.created_at else None,
                }
                for r in rows
            ]
        except SQLAlchemyError as e:
            raise LedgerUnavailable(f"Ledger unavailable: {e}") from e
        finally:
            session.close()

    def _find_by_key(self, session: Session, key: str) -> Optional[DebitReceipt]:
        existing = (
            session.query(LedgerEntry)
                .filter(LedgerEntry.idempotency_key == key)
                .one_or_none()
        )
        if existing is None:
            return None
        return DebitReceipt(new_balance=existing.balance_after, entry_id=existing.id, replayed=True)
