"""Account management service."""

import logging
from decimal import Decimal

from sqlalchemy.orm import Session

from models import Account
from services.exceptions import AccountNotFoundError

logger = logging.getLogger(__name__)


class AccountService:
    """Service for managing account CRUD operations."""

    @staticmethod
    def create_account(
        db: Session,
        user_id: str,
        name: str,
        account_type: str | None = None,
        opening_balance: Decimal = Decimal("0"),
    ) -> Account:
        """Create an account.

        ``opening_balance`` seeds the stored balance only; it is not a
        transaction, so reconciliation reports it until a matching deposit
        is recorded.
        """
        account = Account(
            user_id=user_id,
            name=name,
            account_type=account_type,
            balance=opening_balance,
        )
        db.add(account)
        db.flush()
        logger.info("Account created: %s (id=%s, user=%s)", name, account.id, user_id)
        return account

    @staticmethod
    def list_accounts(db: Session, user_id: str | None = None) -> list[Account]:
        query = db.query(Account)
        if user_id is not None:
            query = query.filter(Account.user_id == user_id)
        return query.order_by(Account.name.asc()).all()

    @staticmethod
    def get_account(db: Session, account_id: str) -> Account:
        """Get a specific account by ID.

        Raises:
            AccountNotFoundError: if no such account exists.
        """
        account = db.get(Account, account_id)
        if account is None:
            raise AccountNotFoundError(account_id)
        return account
