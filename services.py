from __future__ import annotations

import calendar
import json
import logging
import math
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, Optional, Protocol, Union
from zoneinfo import ZoneInfo

from sqlalchemy import case, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from config import get_settings
from database import atomic
from models import (
    OPENING_BALANCE_CATEGORY,
    Account,
    Analytics,
    Category,
    Debt,
    ImportData,
    Transaction,
    UserAccount,
    utcnow,
)
from periods import END_OF_DAY, Window, previous_window, resolve_window
from rendering import PdfRenderer, render_statement_html
from schemas import (
    CATEGORY_NAME_MAX_LENGTH,
    TEXT_MAX_LENGTH,
    TRANSFER_MAX_LENGTH,
    AccountIn,
    AccountUpdateIn,
    StagedTransaction,
)
from spreadsheet import (
    XLSX_CONTENT_TYPE,
    SheetSpec,
    build_workbook,
    parse_amount,
    parse_date,
    read_sheet,
)

logger = logging.getLogger(__name__)

REQUIRED_IMPORT_HEADERS = ("Text", "Amount", "Type", "Transfer", "Category", "Date")
MAX_STATEMENT_TRANSACTIONS = 10_000
PDF_CONTENT_TYPE = "application/pdf"
EXPORT_TYPES = ("pdf", "xlsx")


class LedgerError(Exception):
    status_code = 500


class BadRequest(LedgerError, ValueError):
    status_code = 400


class Forbidden(LedgerError):
    status_code = 403


class NotFound(LedgerError):
    status_code = 404


class Conflict(LedgerError):
    status_code = 409


class InternalError(LedgerError):
    status_code = 500


def local_now() -> datetime:
    tz = ZoneInfo(get_settings().timezone)
    return datetime.now(tz).replace(tzinfo=None)


def percentage_change(old_value: Optional[float], new_value: Optional[float]) -> float:
    old = float(old_value or 0.0)
    new = float(new_value or 0.0)
    if old == 0:
        return 100.0 if new > 0 else 0.0
    change = (new - old) / abs(old) * 100
    return 0.0 if math.isnan(change) else change


def period_change(current: float, previous: Optional[float]) -> float:
    # A zero or missing baseline reports a full 100% change
    if not previous:
        return 100.0
    return round(100.0 * (current - previous) / previous, 2)


def accessible_account(
    session: Session, account_id: int, user_id: int
) -> Optional[Account]:
    """Return the account when ``user_id`` owns it or holds a share on it."""
    shared_ids = select(UserAccount.account_id).where(UserAccount.user_id == user_id)
    return session.scalar(
        select(Account).where(
            Account.id == account_id,
            or_(Account.owner_id == user_id, Account.id.in_(shared_ids)),
        )
    )


@dataclass(frozen=True)
class LedgerDelta:
    amount: float
    is_income: bool


def apply_bulk_deltas(
    session: Session,
    account_id: int,
    owner_id: int,
    deltas: Iterable[LedgerDelta],
) -> None:
    """Fold a batch of new ledger rows into the account's Analytics row.

    Runs inside the caller's unit of work and never commits. The Analytics row
    must already exist; it is created together with its account only.
    """
    income_change = 0.0
    expense_change = 0.0
    for delta in deltas:
        amount = float(delta.amount)
        if not math.isfinite(amount):
            raise ValueError(f"Invalid amount in bulk delta for account {account_id}")
        if delta.is_income:
            income_change += amount
        else:
            expense_change += amount

    if income_change == 0 and expense_change == 0:
        logger.info(f"bulk_analytics_skipped: account_id={account_id} reason=no_change")
        return

    analytics = session.scalar(
        select(Analytics).where(Analytics.account_id == account_id).with_for_update()
    )
    if analytics is None:
        raise InternalError(f"Analytics record missing for account {account_id}")

    current_income = analytics.income or 0.0
    current_expense = analytics.expense or 0.0
    current_balance = analytics.balance or 0.0

    new_income = current_income + income_change
    new_expense = current_expense + expense_change
    new_balance = current_balance + income_change - expense_change

    analytics.previous_income = current_income
    analytics.previous_expenses = current_expense
    analytics.previous_balance = current_balance
    analytics.income = new_income
    analytics.expense = new_expense
    analytics.balance = new_balance
    analytics.income_percentage_change = percentage_change(current_income, new_income)
    analytics.expenses_percentage_change = percentage_change(
        current_expense, new_expense
    )

    session.execute(
        update(Account)
        .where(Account.id == account_id)
        .values(balance=new_balance, updated_at=utcnow())
    )
    session.flush()
    logger.info(
        f"bulk_analytics_applied: account_id={account_id} user_id={owner_id} "
        f"income_change={income_change:.2f} expense_change={expense_change:.2f}"
    )


class AccountService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _name_taken(self, name: str, exclude_id: Optional[int] = None) -> bool:
        stmt = select(Account.id).where(
            Account.owner_id == self.user_id, Account.name == name
        )
        if exclude_id is not None:
            stmt = stmt.where(Account.id != exclude_id)
        return self.session.scalar(stmt) is not None

    def _owned(self, account_id: int, message: str) -> Account:
        account = self.session.scalar(
            select(Account).where(
                Account.id == account_id, Account.owner_id == self.user_id
            )
        )
        if not account:
            raise Forbidden(message)
        return account

    def _find_opening_balance_category(self) -> Optional[Category]:
        return self.session.scalar(
            select(Category).where(
                Category.owner_id == self.user_id,
                Category.name == OPENING_BALANCE_CATEGORY,
            )
        )

    def _opening_balance_category(self) -> Category:
        category = self._find_opening_balance_category()
        if category:
            return category
        try:
            with self.session.begin_nested():
                category = Category(owner_id=self.user_id, name=OPENING_BALANCE_CATEGORY)
                self.session.add(category)
        except IntegrityError:
            # another request created it after the lookup
            category = self._find_opening_balance_category()
            if category is None:
                raise
            logger.info(f"opening_balance_category_reused: user_id={self.user_id}")
        return category

    def get(self, account_id: int) -> Account:
        account = self.session.scalar(
            select(Account)
            .options(joinedload(Account.analytics))
            .where(Account.id == account_id)
        )
        if not account or not accessible_account(self.session, account_id, self.user_id):
            raise NotFound("Account not found or access denied.")
        return account

    def create(self, data: AccountIn) -> Account:
        if self._name_taken(data.name):
            raise Conflict("An account with this name already exists.")

        opening_balance = data.balance
        try:
            with atomic(self.session):
                account = Account(
                    owner_id=self.user_id,
                    name=data.name,
                    balance=opening_balance,
                    currency=data.currency,
                )
                self.session.add(account)
                self.session.flush()

                self.session.add(
                    Analytics(
                        account_id=account.id,
                        user_id=self.user_id,
                        income=max(opening_balance, 0.0),
                        expense=max(-opening_balance, 0.0),
                        balance=opening_balance,
                        previous_income=0.0,
                        previous_expenses=0.0,
                        previous_balance=0.0,
                        income_percentage_change=100.0 if opening_balance > 0 else 0.0,
                        expenses_percentage_change=100.0
                        if opening_balance < 0
                        else 0.0,
                    )
                )

                category = self._opening_balance_category()
                if opening_balance != 0:
                    self.session.add(
                        Transaction(
                            account_id=account.id,
                            owner_id=self.user_id,
                            created_by=self.user_id,
                            updated_by=self.user_id,
                            text=OPENING_BALANCE_CATEGORY,
                            amount=abs(opening_balance),
                            is_income=opening_balance >= 0,
                            category_id=category.id,
                            transfer="self",
                            currency=account.currency,
                        )
                    )
                self.session.flush()
        except IntegrityError as exc:
            logger.info(
                f"account_create_conflict: user_id={self.user_id} name={data.name!r}"
            )
            raise Conflict("An account with this name already exists.") from exc

        logger.info(
            f"account_created: account_id={account.id} user_id={self.user_id} "
            f"opening_balance={opening_balance:.2f} currency={account.currency}"
        )
        return account

    def update(self, account_id: int, data: AccountUpdateIn) -> dict[str, str]:
        account = self._owned(
            account_id, "Account not found or you don't have permission to edit."
        )

        changes: dict[str, object] = {}
        if data.name is not None and data.name != account.name:
            if self._name_taken(data.name, exclude_id=account.id):
                raise Conflict(f'Another account named "{data.name}" already exists.')
            changes["name"] = data.name
        if data.currency is not None and data.currency != account.currency:
            changes["currency"] = data.currency
        if data.balance is not None and data.balance != (account.balance or 0.0):
            changes["balance"] = data.balance

        if not changes:
            return {"message": "No changes detected."}

        try:
            with atomic(self.session):
                for field_name, value in changes.items():
                    setattr(account, field_name, value)
                if "balance" in changes:
                    # direct overwrite; cumulative income/expense stay as they are
                    self.session.execute(
                        update(Analytics)
                        .where(Analytics.account_id == account.id)
                        .values(balance=changes["balance"], updated_at=utcnow())
                    )
                self.session.flush()
        except IntegrityError as exc:
            raise Conflict(f'Another account named "{data.name}" already exists.') from exc

        logger.info(
            f"account_updated: account_id={account_id} fields={','.join(sorted(changes))}"
        )
        return {"message": "Account updated successfully"}

    def delete(self, account_id: int) -> dict[str, str]:
        self._owned(
            account_id, "Account not found or you don't have permission to delete."
        )

        with atomic(self.session):
            self.session.execute(
                delete(UserAccount).where(UserAccount.account_id == account_id)
            )
            self.session.execute(
                delete(Transaction).where(Transaction.account_id == account_id)
            )
            self.session.execute(
                delete(Analytics).where(Analytics.account_id == account_id)
            )
            self.session.execute(delete(Debt).where(Debt.account_id == account_id))
            self.session.execute(
                delete(ImportData).where(ImportData.account_id == account_id)
            )
            self.session.execute(delete(Account).where(Account.id == account_id))

        logger.info(f"account_deleted: account_id={account_id} user_id={self.user_id}")
        return {"message": "Account and related data deleted successfully"}


def check_field_lengths(rows: list[dict[str, object]]) -> None:
    """Reject rows whose Text, Transfer or Category would not fit their columns."""
    limits = (
        ("Text", TEXT_MAX_LENGTH),
        ("Transfer", TRANSFER_MAX_LENGTH),
        ("Category", CATEGORY_NAME_MAX_LENGTH),
    )
    for position, row in enumerate(rows, start=1):
        for column, limit in limits:
            value = row.get(column)
            if value is not None and len(str(value).strip()) > limit:
                raise BadRequest(
                    f"Record {position}: {column} exceeds {limit} characters"
                )


def normalize_import_row(
    row: dict[str, object],
    *,
    account_id: int,
    user_id: int,
    category_ids: dict[str, int],
) -> dict[str, object]:
    """Map one spreadsheet row onto the pending-transaction shape stored in ImportData."""
    type_value = str(row.get("Type") or "").strip().lower()

    raw_amount = row.get("Amount")
    try:
        amount: Optional[float] = parse_amount(
            "" if raw_amount is None else raw_amount, allow_negative=True
        )
    except ValueError:
        amount = None

    category_name = str(row.get("Category") or "").strip()

    raw_date = row.get("Date")
    created_at: Optional[str]
    if raw_date is None or str(raw_date).strip() == "":
        created_at = None
    else:
        try:
            created_at = parse_date(raw_date).isoformat()
        except ValueError:
            # kept verbatim; confirmation rejects it
            created_at = str(raw_date).strip()

    text = row.get("Text")
    transfer = row.get("Transfer")
    return {
        "account_id": account_id,
        "owner_id": user_id,
        "created_by": user_id,
        "updated_by": user_id,
        "text": "" if text is None else str(text).strip(),
        "amount": amount,
        "is_income": type_value == "income",
        "category_id": category_ids.get(category_name) if category_name else None,
        "transfer": None if transfer is None else str(transfer).strip(),
        "created_at": created_at,
    }


IMPORT_SAMPLE_ROWS = [
    ["Salary", 2500, "income", "bank", "Work", "2024-01-01"],
    ["Coffee", 4.5, "expense", "-", "Dining", "2024-01-05"],
]


def import_template() -> bytes:
    """Sample workbook with the headers ``stage`` expects and two example rows."""
    sheet = SheetSpec(
        title="Transactions",
        rows=[list(REQUIRED_IMPORT_HEADERS), *IMPORT_SAMPLE_ROWS],
        column_widths=[30, 12, 10, 15, 20, 12],
        bold_first_row=True,
    )
    return build_workbook([sheet])


class ImportService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _record(self, import_id: int) -> Optional[ImportData]:
        return self.session.scalar(
            select(ImportData).where(
                ImportData.id == import_id, ImportData.user_id == self.user_id
            )
        )

    def _resolve_categories(self, rows: list[dict[str, object]]) -> dict[str, int]:
        names: list[str] = []
        for row in rows:
            name = str(row.get("Category") or "").strip()
            if name and name not in names:
                names.append(name)
        if not names:
            return {}

        lookup = {
            category.name: category.id
            for category in self.session.scalars(
                select(Category).where(
                    Category.owner_id == self.user_id, Category.name.in_(names)
                )
            )
        }
        missing = [name for name in names if name not in lookup]
        if missing:
            created = [Category(owner_id=self.user_id, name=name) for name in missing]
            self.session.add_all(created)
            self.session.flush()
            for category in created:
                lookup[category.name] = category.id
        return lookup

    def stage(self, account_id: int, content: bytes) -> dict[str, object]:
        account = self.session.scalar(
            select(Account).where(
                Account.id == account_id, Account.owner_id == self.user_id
            )
        )
        if not account:
            raise NotFound("Account not found")

        try:
            headers, rows = read_sheet(content)
        except ValueError as exc:
            raise BadRequest(str(exc)) from exc
        if not rows:
            raise BadRequest("Document is empty")

        missing = [h for h in REQUIRED_IMPORT_HEADERS if h not in headers]
        if missing:
            raise BadRequest(f"Missing required headers: {', '.join(missing)}")
        check_field_lengths(rows)

        try:
            with atomic(self.session):
                category_ids = self._resolve_categories(rows)
                staged = [
                    normalize_import_row(
                        row,
                        account_id=account_id,
                        user_id=self.user_id,
                        category_ids=category_ids,
                    )
                    for row in rows
                ]
                record = ImportData(
                    account_id=account_id,
                    user_id=self.user_id,
                    data=json.dumps(staged),
                    total_records=len(staged),
                    error_records=0,
                    is_imported=False,
                )
                self.session.add(record)
                self.session.flush()
        except IntegrityError as exc:
            raise Conflict(
                "A category from this file was created concurrently; retry the import."
            ) from exc

        logger.info(
            f"import_staged: import_id={record.id} account_id={account_id} "
            f"rows={len(staged)} categories={len(category_ids)}"
        )
        return {
            "message": "Imported successfully",
            "import_id": record.id,
            "total_records": len(staged),
        }

    def _hydrate(self, record: ImportData) -> list[StagedTransaction]:
        try:
            if not record.data:
                raise ValueError("Stored import data is empty.")
            payload = json.loads(record.data)
            if not isinstance(payload, list):
                raise ValueError("Stored import data is not an array.")
            return [StagedTransaction.model_validate(item) for item in payload]
        except ValueError as exc:
            raise InternalError(f"Failed to parse stored import data: {exc}") from exc

    def _claim(self, import_id: int) -> None:
        # only one caller may flip the flag; a concurrent loser sees zero rows
        result = self.session.execute(
            update(ImportData)
            .where(ImportData.id == import_id, ImportData.is_imported.is_(False))
            .values(is_imported=True, updated_at=utcnow())
        )
        if result.rowcount != 1:
            raise BadRequest("Data already imported.")

    def confirm(self, import_id: int) -> dict[str, str]:
        record = self._record(import_id)
        if not record:
            raise NotFound("Import record not found or access denied.")
        if record.is_imported:
            raise BadRequest("Data already imported.")

        staged = self._hydrate(record)

        if not staged:
            with atomic(self.session):
                self._claim(record.id)
            logger.info(f"import_confirmed: import_id={import_id} rows=0")
            return {"message": "No valid transactions to import."}

        account = self.session.get(Account, record.account_id)
        if account is None:
            raise NotFound("Account not found")

        now = utcnow()
        try:
            with atomic(self.session):
                self._claim(record.id)
                self.session.add_all(
                    [
                        Transaction(
                            account_id=record.account_id,
                            owner_id=item.owner_id,
                            created_by=item.created_by,
                            updated_by=item.updated_by,
                            text=item.text,
                            amount=item.amount,
                            is_income=item.is_income,
                            category_id=item.category_id,
                            transfer=item.transfer,
                            currency=account.currency,
                            recurrence_end_date=item.recurrence_end_date,
                            created_at=item.created_at or now,
                            updated_at=now,
                        )
                        for item in staged
                    ]
                )
                self.session.flush()
                apply_bulk_deltas(
                    self.session,
                    record.account_id,
                    self.user_id,
                    [LedgerDelta(item.amount, item.is_income) for item in staged],
                )
        except LedgerError:
            raise
        except SQLAlchemyError as exc:
            logger.exception(f"import_confirm_failed: import_id={import_id}")
            raise InternalError(f"Bulk import failed: {exc}") from exc

        logger.info(
            f"import_confirmed: import_id={import_id} account_id={record.account_id} "
            f"rows={len(staged)}"
        )
        return {"message": "Data imported successfully"}

    def get_staged(self, import_id: int) -> dict[str, object]:
        record = self._record(import_id)
        if not record:
            raise NotFound("Import data not found or access denied.")
        try:
            payload = json.loads(record.data) if record.data else None
        except ValueError as exc:
            raise InternalError("Failed to parse stored import data.") from exc
        if not isinstance(payload, list):
            raise InternalError("Failed to parse stored import data.")
        return {
            "length": len(payload),
            "data": payload,
            "account_id": record.account_id,
            "total_records": record.total_records,
            "error_records": record.error_records,
            "is_imported": record.is_imported,
            "created_at": record.created_at,
        }


def _as_date(value: Union[str, date, datetime]) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


@dataclass(frozen=True)
class WindowTotals:
    income: float
    expense: float
    balance: float


class MetricsService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _empty_dashboard(self, accounts: list[dict[str, object]]) -> dict[str, object]:
        return {
            "accounts": accounts,
            "transactions_count_by_account": {a["name"]: 0 for a in accounts},
            "total_transactions": 0,
            "most_expensive_expense": 0.0,
            "cheapest_expense": 0.0,
            "most_expensive_income": 0.0,
            "cheapest_income": 0.0,
            "income_chart_data": [],
            "expense_chart_data": [],
            "balance_chart_data": [],
            "overall_income": 0.0,
            "overall_expense": 0.0,
            "overall_balance": 0.0,
            "overall_income_change": 0.0,
            "overall_expense_change": 0.0,
        }

    def dashboard(self) -> dict[str, object]:
        rows = self.session.execute(
            select(
                Account.id,
                Account.name,
                Account.balance,
                Analytics.income,
                Analytics.expense,
            )
            .outerjoin(Analytics, Analytics.account_id == Account.id)
            .where(Account.owner_id == self.user_id)
            .order_by(Analytics.balance.desc(), Account.id)
        ).all()
        accounts = [
            {
                "id": row.id,
                "name": row.name,
                "balance": row.balance,
                "income": row.income or 0.0,
                "expense": row.expense or 0.0,
            }
            for row in rows
        ]

        if not accounts or (
            len(accounts) == 1
            and accounts[0]["income"] == 0
            and accounts[0]["expense"] == 0
        ):
            return self._empty_dashboard(accounts)

        counts = {
            row.name: int(row.txn_count)
            for row in self.session.execute(
                select(Account.name, func.count(Transaction.id).label("txn_count"))
                .outerjoin(Transaction, Transaction.account_id == Account.id)
                .where(Account.owner_id == self.user_id)
                .group_by(Account.id, Account.name)
            )
        }

        total_transactions = int(
            self.session.scalar(
                select(func.count(Transaction.id)).where(
                    Transaction.owner_id == self.user_id
                )
            )
            or 0
        )

        expense_amount = case(
            (Transaction.is_income.is_(False), Transaction.amount), else_=None
        )
        income_amount = case(
            (Transaction.is_income.is_(True), Transaction.amount), else_=None
        )
        extremes = self.session.execute(
            select(
                func.max(expense_amount).label("most_expensive_expense"),
                func.min(expense_amount).label("cheapest_expense"),
                func.max(income_amount).label("most_expensive_income"),
                func.min(income_amount).label("cheapest_income"),
            ).where(Transaction.owner_id == self.user_id)
        ).one()

        day = func.date(Transaction.created_at)
        income_sum = func.coalesce(
            func.sum(case((Transaction.is_income.is_(True), Transaction.amount), else_=0.0)),
            0.0,
        )
        expense_sum = func.coalesce(
            func.sum(case((Transaction.is_income.is_(False), Transaction.amount), else_=0.0)),
            0.0,
        )
        income_chart: list[dict[str, float]] = []
        expense_chart: list[dict[str, float]] = []
        balance_chart: list[dict[str, float]] = []
        for row in self.session.execute(
            select(
                day.label("day"),
                income_sum.label("income"),
                expense_sum.label("expense"),
            )
            .where(Transaction.owner_id == self.user_id)
            .group_by(day)
            .order_by(day)
        ):
            x = calendar.timegm(_as_date(row.day).timetuple())
            income = float(row.income or 0)
            expense = float(row.expense or 0)
            income_chart.append({"x": x, "y": income})
            expense_chart.append({"x": x, "y": expense})
            balance_chart.append({"x": x, "y": income - expense})

        overall = self.session.execute(
            select(
                func.coalesce(func.sum(Analytics.income), 0.0).label("income"),
                func.coalesce(func.sum(Analytics.expense), 0.0).label("expense"),
                func.coalesce(func.sum(Analytics.balance), 0.0).label("balance"),
                func.coalesce(func.avg(Analytics.income_percentage_change), 0.0).label(
                    "income_change"
                ),
                func.coalesce(
                    func.avg(Analytics.expenses_percentage_change), 0.0
                ).label("expense_change"),
            )
            .join(Account, Account.id == Analytics.account_id)
            .where(Account.owner_id == self.user_id)
        ).one()

        return {
            "accounts": accounts,
            "transactions_count_by_account": counts,
            "total_transactions": total_transactions,
            "most_expensive_expense": float(extremes.most_expensive_expense or 0),
            "cheapest_expense": float(extremes.cheapest_expense or 0),
            "most_expensive_income": float(extremes.most_expensive_income or 0),
            "cheapest_income": float(extremes.cheapest_income or 0),
            "income_chart_data": income_chart,
            "expense_chart_data": expense_chart,
            "balance_chart_data": balance_chart,
            "overall_income": float(overall.income),
            "overall_expense": float(overall.expense),
            "overall_balance": float(overall.balance),
            "overall_income_change": round(float(overall.income_change), 2),
            "overall_expense_change": round(float(overall.expense_change), 2),
        }

    def _window_totals(self, account_id: int, window: Window) -> WindowTotals:
        signed = case(
            (Transaction.is_income.is_(True), Transaction.amount),
            else_=-Transaction.amount,
        )
        row = self.session.execute(
            select(
                func.coalesce(
                    func.sum(
                        case((Transaction.is_income.is_(True), Transaction.amount), else_=0.0)
                    ),
                    0.0,
                ).label("income"),
                func.coalesce(
                    func.sum(
                        case((Transaction.is_income.is_(False), Transaction.amount), else_=0.0)
                    ),
                    0.0,
                ).label("expense"),
                func.coalesce(func.sum(signed), 0.0).label("balance"),
            ).where(
                Transaction.account_id == account_id,
                Transaction.created_at.between(window.start, window.end),
            )
        ).one_or_none()
        if row is None:
            return WindowTotals(0.0, 0.0, 0.0)
        return WindowTotals(float(row.income), float(row.expense), float(row.balance))

    def custom_analytics(
        self,
        account_id: int,
        duration: Optional[str],
        *,
        now: Optional[datetime] = None,
    ) -> dict[str, object]:
        if not accessible_account(self.session, account_id, self.user_id):
            raise NotFound("Account not found or access denied.")

        first_activity = self.session.scalar(
            select(func.min(Transaction.created_at)).where(
                Transaction.account_id == account_id
            )
        )
        try:
            window = resolve_window(
                duration, first_activity=first_activity, now=now or local_now()
            )
        except ValueError as exc:
            raise BadRequest(str(exc)) from exc
        previous = previous_window(window)

        current_totals = self._window_totals(account_id, window)
        previous_totals = self._window_totals(account_id, previous)

        return {
            "income": current_totals.income,
            "expense": current_totals.expense,
            "balance": current_totals.balance,
            "income_percentage_change": period_change(
                current_totals.income, previous_totals.income
            ),
            "expense_percentage_change": period_change(
                current_totals.expense, previous_totals.expense
            ),
            "balance_percentage_change": period_change(
                current_totals.balance, previous_totals.balance
            ),
            "start": window.start,
            "end": window.end,
        }


@dataclass(frozen=True)
class StatementFilter:
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    limit: Optional[int] = None
    label: str = "All Transactions"

    @classmethod
    def from_params(
        cls,
        start: Optional[str] = None,
        end: Optional[str] = None,
        limit: Optional[Union[str, int]] = None,
    ) -> "StatementFilter":
        if start and end:
            try:
                start_at = parse_date(start)
                end_at = parse_date(end)
            except ValueError as exc:
                raise BadRequest("Invalid date range provided.") from exc
            if start_at > end_at:
                raise BadRequest("Invalid date range provided.")
            return cls(
                start=start_at,
                end=datetime.combine(end_at.date(), END_OF_DAY),
                label=f"{start} to {end}",
            )
        if limit is not None and str(limit).strip() != "":
            try:
                count = int(str(limit).strip())
            except ValueError as exc:
                raise BadRequest(
                    "Invalid number of transactions specified (1-10000)."
                ) from exc
            if count < 1 or count > MAX_STATEMENT_TRANSACTIONS:
                raise BadRequest("Invalid number of transactions specified (1-10000).")
            return cls(limit=count, label=f"Last {count} Transactions")
        return cls()


@dataclass(frozen=True)
class StatementFile:
    content: bytes
    content_type: str
    filename: str


class Renderer(Protocol):
    def render(self, html: str, options: Optional[dict[str, object]] = None) -> bytes:
        ...


class StatementService:
    def __init__(
        self,
        session: Session,
        user_id: int,
        renderer: Optional[Renderer] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.renderer = renderer or PdfRenderer()

    def fetch(self, account_id: int, statement_filter: StatementFilter) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(Transaction.account_id == account_id)
        )
        if statement_filter.start is not None and statement_filter.end is not None:
            stmt = stmt.where(
                Transaction.created_at.between(statement_filter.start, statement_filter.end)
            )
        stmt = stmt.order_by(Transaction.created_at.desc(), Transaction.id.desc())
        if statement_filter.limit is not None:
            stmt = stmt.limit(statement_filter.limit)
        return list(self.session.scalars(stmt).all())

    def generate(
        self,
        account_id: int,
        export_type: Optional[str],
        statement_filter: Optional[StatementFilter] = None,
    ) -> StatementFile:
        if export_type not in EXPORT_TYPES:
            raise BadRequest("Export type must be pdf or xlsx")

        account = accessible_account(self.session, account_id, self.user_id)
        if not account:
            raise NotFound("Account not found or access denied.")

        statement_filter = statement_filter or StatementFilter()
        transactions = self.fetch(account.id, statement_filter)

        total_income = sum(t.amount for t in transactions if t.is_income)
        total_expense = sum(t.amount for t in transactions if not t.is_income)
        report: dict[str, object] = {
            "account_name": account.name,
            "account_currency": account.currency,
            "transactions": transactions,
            "total_income": total_income,
            "total_expense": total_expense,
            "balance": total_income - total_expense,
            "generated_at": local_now().strftime("%Y-%m-%d %H:%M:%S"),
            "date_range": statement_filter.label,
        }
        logger.info(
            f"statement_requested: account_id={account.id} export_type={export_type} "
            f"period={statement_filter.label!r} rows={len(transactions)}"
        )

        if export_type == "pdf":
            try:
                html = render_statement_html(report)
                content = self.renderer.render(
                    html, {"format": "A4", "print_background": True}
                )
            except Exception as exc:
                logger.exception(f"statement_render_failed: account_id={account.id}")
                raise InternalError(f"Failed to render statement: {exc}") from exc
            return StatementFile(content, PDF_CONTENT_TYPE, "statement.pdf")

        return StatementFile(
            build_workbook(self._sheets(report)), XLSX_CONTENT_TYPE, "statement.xlsx"
        )

    def _sheets(self, report: dict[str, object]) -> list[SheetSpec]:
        summary = SheetSpec(
            title="Summary",
            rows=[
                ["Account Name:", report["account_name"]],
                ["Currency:", report["account_currency"]],
                ["Generated At:", report["generated_at"]],
                ["Period:", report["date_range"]],
                [],
                ["Total Income:", round(report["total_income"], 2)],
                ["Total Expense:", round(report["total_expense"], 2)],
                ["Net Balance:", round(report["balance"], 2)],
                [],
                ["Transactions"],
            ],
            column_widths=[20, 30],
        )
        rows: list[list[object]] = [
            ["Date", "Text", "Category", "Amount", "Type", "Transfer", "Currency"]
        ]
        for txn in report["transactions"]:
            rows.append(
                [
                    txn.created_at.date() if txn.created_at else "N/A",
                    txn.text,
                    txn.category.name if txn.category else "N/A",
                    txn.amount if txn.is_income else -txn.amount,
                    "Income" if txn.is_income else "Expense",
                    txn.transfer or "",
                    txn.currency or report["account_currency"],
                ]
            )
        transactions = SheetSpec(
            title="Transactions",
            rows=rows,
            column_widths=[12, 40, 20, 15, 10, 20, 10],
            bold_first_row=True,
        )
        return [summary, transactions]
