import re
import zipfile
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation
from io import BytesIO
from typing import Sequence

from openpyxl import Workbook, load_workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from openpyxl.utils.exceptions import InvalidFileException

XLSX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
PLAIN_VALUE = re.compile(r"^(?:-|[+-]?\d+(?:[.,]\d+)?)$")


@dataclass
class SheetSpec:
    title: str
    rows: list[list[object]]
    column_widths: list[int] = field(default_factory=list)
    bold_first_row: bool = False


def sanitize_cell(value: object) -> object:
    """
    Neutralize text that a spreadsheet would evaluate as a formula by prefixing it with a tab.
    Non-string values are returned untouched.
    """
    if not isinstance(value, str):
        return value
    if value.strip() == "":
        return ""

    value = value.strip()

    # a lone dash or a signed number is data, not a formula
    if PLAIN_VALUE.match(value):
        return value

    formula_triggers = ("=", "+", "-", "@", "\t", "\r")

    if value.startswith(formula_triggers):
        return "\t" + value

    dangerous_patterns = [
        r"^cmd\s*",
        r"^powershell\s*",
        r"^http[s]?://",
    ]

    for pattern in dangerous_patterns:
        if re.match(pattern, value, re.IGNORECASE):
            return "\t" + value

    return value


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_date(value: object) -> datetime:
    """Parse a cell or query value into a naive datetime; offsets are folded into UTC."""
    if isinstance(value, datetime):
        return _naive_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    text = str(value).strip()
    if not text:
        raise ValueError("Empty date")
    try:
        return _naive_utc(datetime.fromisoformat(text))
    except ValueError:
        pass
    for fmt in ("%d.%m.%Y", "%m/%d/%Y", "%Y/%m/%d"):
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    raise ValueError(f"Invalid date: {text}")


def parse_amount(value: object, *, allow_negative: bool = False) -> float:
    if isinstance(value, bool):
        raise ValueError("Invalid amount")
    if isinstance(value, (int, float)):
        amount = Decimal(str(value))
    else:
        clean = str(value).strip().replace("€", "").replace("$", "").replace("₹", "")
        clean = clean.replace(" ", "").replace(",", ".")
        if clean.count(".") > 1:
            parts = clean.split(".")
            clean = "".join(parts[:-1]) + "." + parts[-1]
        try:
            amount = Decimal(clean)
        except InvalidOperation as exc:
            raise ValueError("Invalid amount") from exc
    if not amount.is_finite():
        raise ValueError("Invalid amount")
    if amount < 0 and not allow_negative:
        raise ValueError("Amount must be positive")
    return float(amount)


def read_sheet(content: bytes) -> tuple[list[str], list[dict[str, object]]]:
    """Read the first worksheet of an xlsx file.

    Returns the header names from the first row and one dict per non-blank data
    row, keyed by header.
    """
    try:
        workbook = load_workbook(BytesIO(content), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as exc:
        raise ValueError("Unable to read spreadsheet") from exc

    try:
        if not workbook.sheetnames:
            raise ValueError("Document is empty")
        worksheet = workbook[workbook.sheetnames[0]]
        rows = worksheet.iter_rows(values_only=True)
        header_row = next(rows, None)
        if header_row is None:
            raise ValueError("Document is empty")
        headers = [str(cell).strip() if cell is not None else "" for cell in header_row]

        records: list[dict[str, object]] = []
        for raw in rows:
            if all(cell is None or str(cell).strip() == "" for cell in raw):
                continue
            records.append(
                {name: cell for name, cell in zip(headers, raw) if name}
            )
    finally:
        workbook.close()
    return [h for h in headers if h], records


def build_workbook(sheets: Sequence[SheetSpec]) -> bytes:
    workbook = Workbook()
    workbook.remove(workbook.active)
    for sheet in sheets:
        worksheet = workbook.create_sheet(sheet.title)
        for row in sheet.rows:
            worksheet.append([sanitize_cell(value) for value in row])
        if sheet.bold_first_row and sheet.rows:
            for cell in worksheet[1]:
                cell.font = Font(bold=True)
        for idx, width in enumerate(sheet.column_widths, start=1):
            worksheet.column_dimensions[get_column_letter(idx)].width = width
    output = BytesIO()
    workbook.save(output)
    return output.getvalue()
