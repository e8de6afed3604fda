from datetime import datetime
from io import BytesIO

import pytest
from openpyxl import load_workbook
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from models import Account, Category, Transaction, UserAccount
from schemas import AccountIn
from services import (
    PDF_CONTENT_TYPE,
    AccountService,
    BadRequest,
    InternalError,
    NotFound,
    StatementFilter,
    StatementService,
)
from spreadsheet import XLSX_CONTENT_TYPE


class FakeRenderer:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls: list[tuple[str, dict]] = []

    def render(self, html, options=None):
        if self.fail:
            raise RuntimeError("renderer offline")
        self.calls.append((html, options))
        return b"%PDF-1.7 fake"


def make_session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return Session(engine)


def seed(session: Session) -> Account:
    account = AccountService(session, user_id=1).create(
        AccountIn(name="Wallet", currency="eur")
    )
    food = Category(owner_id=1, name="Food")
    session.add(food)
    session.flush()
    entries = [
        ("Salary", 1000, True, datetime(2024, 1, 1, 0, 0), None),
        ("Groceries", 60.5, False, datetime(2024, 1, 10, 23, 30), food.id),
        ("=HYPERLINK(\"x\")", 15, False, datetime(2024, 1, 11, 0, 0), None),
        ("Bonus", 200, True, datetime(2023, 12, 31, 23, 59), None),
    ]
    for text, amount, is_income, created_at, category_id in entries:
        session.add(
            Transaction(
                account_id=account.id,
                owner_id=1,
                created_by=1,
                text=text,
                amount=amount,
                is_income=is_income,
                category_id=category_id,
                currency="EUR",
                created_at=created_at,
            )
        )
    session.commit()
    return account


def test_filter_from_params() -> None:
    assert StatementFilter.from_params().label == "All Transactions"

    ranged = StatementFilter.from_params("2024-01-01", "2024-01-10", "5")
    assert ranged.start == datetime(2024, 1, 1)
    assert ranged.end == datetime(2024, 1, 10, 23, 59, 59, 999999)
    assert ranged.limit is None
    assert ranged.label == "2024-01-01 to 2024-01-10"

    limited = StatementFilter.from_params(None, "2024-01-10", "25")
    assert limited.limit == 25
    assert limited.label == "Last 25 Transactions"


@pytest.mark.parametrize(
    "start,end,limit",
    [
        ("2024-02-01", "2024-01-01", None),
        ("someday", "2024-01-01", None),
        (None, None, "0"),
        (None, None, "10001"),
        (None, None, "ten"),
    ],
)
def test_filter_rejects_invalid_params(start, end, limit) -> None:
    with pytest.raises(BadRequest):
        StatementFilter.from_params(start, end, limit)


def test_filter_folds_offsets_into_utc() -> None:
    mixed = StatementFilter.from_params("2024-01-05T00:00:00+00:00", "2024-01-06")
    assert mixed.start == datetime(2024, 1, 5)
    assert mixed.end == datetime(2024, 1, 6, 23, 59, 59, 999999)

    shifted = StatementFilter.from_params("2024-01-05T01:30:00+02:00", "2024-01-05")
    assert shifted.start == datetime(2024, 1, 4, 23, 30)

    with pytest.raises(BadRequest, match="Invalid date range"):
        StatementFilter.from_params("2024-01-08T01:00:00+01:00", "2024-01-06")


def test_pdf_statement_for_date_range() -> None:
    with make_session() as session:
        account = seed(session)
        renderer = FakeRenderer()

        statement = StatementService(session, user_id=1, renderer=renderer).generate(
            account.id,
            "pdf",
            StatementFilter.from_params("2024-01-01", "2024-01-10"),
        )

        assert statement.content == b"%PDF-1.7 fake"
        assert statement.content_type == PDF_CONTENT_TYPE
        assert statement.filename == "statement.pdf"

        html, options = renderer.calls[0]
        assert options["format"] == "A4"
        assert "Wallet" in html
        assert "2024-01-01 to 2024-01-10" in html
        assert "Groceries" in html
        assert "Salary" in html
        assert "Bonus" not in html
        assert "HYPERLINK" not in html
        assert "939.50 EUR" in html


def test_pdf_render_failure_is_internal_error() -> None:
    with make_session() as session:
        account = seed(session)
        service = StatementService(session, user_id=1, renderer=FakeRenderer(fail=True))

        with pytest.raises(InternalError, match="renderer offline"):
            service.generate(account.id, "pdf")


def test_date_filter_bounds_are_inclusive() -> None:
    with make_session() as session:
        account = seed(session)
        service = StatementService(session, user_id=1, renderer=FakeRenderer())
        statement_filter = StatementFilter.from_params("2024-01-01", "2024-01-10")

        rows = service.fetch(account.id, statement_filter)

        assert [t.text for t in rows] == ["Groceries", "Salary"]
        assert all(
            statement_filter.start <= t.created_at <= statement_filter.end for t in rows
        )


def test_xlsx_statement_layout() -> None:
    with make_session() as session:
        account = seed(session)

        statement = StatementService(session, user_id=1, renderer=FakeRenderer()).generate(
            account.id, "xlsx", StatementFilter.from_params(limit="3")
        )

        assert statement.content_type == XLSX_CONTENT_TYPE
        assert statement.filename == "statement.xlsx"

        wb = load_workbook(BytesIO(statement.content))
        assert wb.sheetnames == ["Summary", "Transactions"]

        summary = [row for row in wb["Summary"].iter_rows(values_only=True)]
        assert summary[0] == ("Account Name:", "Wallet")
        assert summary[1] == ("Currency:", "EUR")
        assert summary[3] == ("Period:", "Last 3 Transactions")
        assert summary[5] == ("Total Income:", 1000)
        assert summary[6] == ("Total Expense:", 75.5)
        assert summary[7] == ("Net Balance:", 924.5)
        assert summary[9][0] == "Transactions"

        sheet = wb["Transactions"]
        rows = list(sheet.iter_rows(values_only=True))
        assert rows[0] == (
            "Date",
            "Text",
            "Category",
            "Amount",
            "Type",
            "Transfer",
            "Currency",
        )
        assert sheet["A1"].font.bold
        assert len(rows) == 4
        # newest first
        assert rows[1][1] == '\t=HYPERLINK("x")'
        assert rows[1][3] == -15
        assert rows[1][4] == "Expense"
        assert rows[2][2] == "Food"
        assert rows[3][2] == "N/A"
        assert rows[3][3] == 1000
        assert rows[3][6] == "EUR"
        assert sheet.column_dimensions["B"].width == 40


def test_statement_rejects_unknown_export_type() -> None:
    with make_session() as session:
        account = seed(session)
        with pytest.raises(BadRequest):
            StatementService(session, user_id=1, renderer=FakeRenderer()).generate(
                account.id, "csv"
            )


def test_statement_access() -> None:
    with make_session() as session:
        account = seed(session)
        session.add(UserAccount(user_id=2, account_id=account.id))
        session.commit()

        shared = StatementService(session, user_id=2, renderer=FakeRenderer()).generate(
            account.id, "xlsx"
        )
        assert shared.content

        with pytest.raises(NotFound):
            StatementService(session, user_id=3, renderer=FakeRenderer()).generate(
                account.id, "pdf"
            )
