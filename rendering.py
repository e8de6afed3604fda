import logging
from datetime import datetime
from typing import Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

from config import get_settings

logger = logging.getLogger(__name__)

PAGE_FORMATS = {"A4", "A5", "A3", "Letter", "Legal"}
NO_BACKGROUND_CSS = "* { background: none !important; }"

STATEMENT_CSS = """
    body {
        font-family: ui-sans-serif, -apple-system, "Segoe UI", Roboto, Helvetica, Arial;
        font-size: 10.5pt;
        line-height: 1.35;
        color: #0f172a;
    }
    .header { border-bottom: 1px solid #e2e8f0; padding-bottom: 6mm; margin-bottom: 8mm; }
    .title { font-size: 20pt; font-weight: 700; }
    .meta { color: #64748b; font-size: 9.5pt; }
    .kpi-grid { display: flex; gap: 10px; }
    .kpi-card { flex: 1; border: 1px solid #e2e8f0; border-radius: 12px; padding: 10px 12px; }
    .kpi-label { font-size: 9pt; font-weight: 700; text-transform: uppercase; color: #64748b; }
    .kpi-value { font-size: 15pt; font-weight: 800; font-variant-numeric: tabular-nums; }
    .positive { color: #16a34a; }
    .negative { color: #dc2626; }
    table { width: 100%; border-collapse: collapse; margin-top: 6mm; font-size: 9.5pt; }
    thead th {
        text-align: left;
        font-size: 8.5pt;
        text-transform: uppercase;
        color: #64748b;
        background: #f1f5f9;
        padding: 7px 8px;
    }
    tbody td { padding: 6px 8px; border-bottom: 1px solid #e2e8f0; vertical-align: top; }
    .cell-right { text-align: right; font-variant-numeric: tabular-nums; white-space: nowrap; }
"""


def page_css(page_format: str = "A4") -> str:
    return f"""
    @page {{
        size: {page_format};
        margin: 18mm 16mm 20mm 16mm;
        @bottom-center {{
            content: "Page " counter(page) " of " counter(pages);
            color: #64748b;
            font-size: 9pt;
        }}
    }}
"""


def statement_stylesheets(options: Optional[dict[str, object]] = None) -> list[str]:
    """CSS sources for a render: page setup, body styles, then the background override."""
    options = options or {}
    page_format = str(options.get("format") or "A4")
    if page_format not in PAGE_FORMATS:
        raise ValueError(f"Unsupported page format: {page_format}")
    sheets = [page_css(page_format), str(options.get("css", STATEMENT_CSS))]
    if not options.get("print_background", True):
        sheets.append(NO_BACKGROUND_CSS)
    return sheets


def format_amount(value: float, currency: Optional[str] = None) -> str:
    text = f"{value:,.2f}"
    return f"{text} {currency}" if currency else text


def _environment() -> Environment:
    env = Environment(
        loader=FileSystemLoader(get_settings().templates_dir),
        autoescape=select_autoescape(["html"]),
    )
    env.filters["amount"] = format_amount
    return env


def render_statement_html(report: dict[str, object]) -> str:
    return _environment().get_template("statement.html").render(**report)


class PdfRenderer:
    """Turns an HTML document into PDF bytes with WeasyPrint."""

    def __init__(self, base_url: Optional[str] = None) -> None:
        self.base_url = base_url

    def render(self, html: str, options: Optional[dict[str, object]] = None) -> bytes:
        sources = statement_stylesheets(options)
        try:
            from weasyprint import CSS, HTML
            from weasyprint.text.fonts import FontConfiguration
        except Exception as exc:
            raise RuntimeError(
                "PDF export requires WeasyPrint system dependencies; install them for your OS and retry."
            ) from exc

        start_time = datetime.now()
        font_config = FontConfiguration()
        stylesheets = [CSS(string=source, font_config=font_config) for source in sources]
        pdf_bytes = HTML(string=html, base_url=self.base_url).write_pdf(
            stylesheets=stylesheets, font_config=font_config
        )
        duration = (datetime.now() - start_time).total_seconds()
        logger.info(
            f"pdf_rendered: pdf_size_bytes={len(pdf_bytes)} pdf_duration={duration:.2f}s"
        )
        return pdf_bytes
