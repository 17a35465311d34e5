"""Build the reconciled PDF.

Every statement page is copied in order. After each page, every reported
entry of that page is followed either by the full receipt it was matched to
or by a red placeholder page describing the entry.
"""

from __future__ import annotations

import logging
import textwrap
from dataclasses import dataclass, field
from io import BytesIO
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from pypdf import PageObject, PdfReader, PdfWriter
from reportlab.lib.colors import Color, black, white
from reportlab.pdfgen import canvas

from receipt_matcher import CandidateDocument, MatchOutcome, build_candidate_pool, match_entries
from statement_parser import (
    DEFAULT_FEE_LABELS,
    DEFAULT_SKIP_PAGES,
    Entry,
    Report,
    build_report,
    entry_to_json,
    extract_text,
)


logger = logging.getLogger(__name__)

PLACEHOLDER_BACKGROUND = Color(0.85, 0.1, 0.1)
FONT_NAME = "Helvetica"
FONT_SIZE = 12
LINE_GAP = 6
MARGIN = 50
WRAP_WIDTH = 90
FAILED_ATTACHMENT_NOTICE = "(failed to attach matched PDF)"


@dataclass(frozen=True)
class PlaceholderDescriptor:
    pages: Tuple[int, ...]
    original_page: int
    owner: str
    entry: Entry


@dataclass
class BuildContext:
    writer: PdfWriter = field(default_factory=PdfWriter)
    page_count: int = 0
    placeholders: List[PlaceholderDescriptor] = field(default_factory=list)

    def add_page(self, page: PageObject) -> int:
        self.writer.add_page(page)
        self.page_count += 1
        return self.page_count

    def to_bytes(self) -> bytes:
        out = BytesIO()
        self.writer.write(out)
        return out.getvalue()


@dataclass(frozen=True)
class CombineResult:
    pdf_bytes: bytes
    report: Report
    outcomes: Tuple[MatchOutcome, ...]
    placeholders: Tuple[PlaceholderDescriptor, ...]


def placeholder_to_json(placeholder: PlaceholderDescriptor) -> dict:
    return {
        "pages": list(placeholder.pages),
        "expected": {
            "originalPage": placeholder.original_page,
            "owner": placeholder.owner,
            "entry": entry_to_json(placeholder.entry),
        },
    }


def placeholder_lines(entry: Entry) -> List[str]:
    lines = [
        f"Transaction date: {entry.transaction_date or ''}",
        f"Posting date: {entry.posting_date or ''}",
        f"Description: {entry.description or ''}",
    ]
    if entry.foreign_currency_code:
        lines.append(
            f"Foreign: {entry.foreign_currency_code} {entry.foreign_amount_text or ''} "
            f"@ {entry.fx_rate_text or ''} {entry.foreign_sign or ''}".rstrip()
        )
    lines.append(f"Amount: {entry.amount_text or ''} {entry.sign or ''}".rstrip())
    lines.append("--- Raw ---")
    lines.append(entry.raw)
    return lines


def wrap_lines(lines: Iterable[str], width: int = WRAP_WIDTH) -> List[str]:
    wrapped: List[str] = []
    for line in lines:
        if not line:
            continue
        wrapped.extend(textwrap.wrap(line, width=width) or [line])
    return wrapped


def render_text_pages(
    lines: Sequence[str],
    width: float,
    height: float,
    background: Optional[Color] = None,
    text_color: Color = black,
) -> List[PageObject]:
    """Render wrapped lines onto as many pages of the given size as needed."""
    buffer = BytesIO()
    pdf = canvas.Canvas(buffer, pagesize=(width, height))

    def start_page() -> None:
        if background is not None:
            pdf.setFillColor(background)
            pdf.rect(0, 0, width, height, stroke=0, fill=1)
        pdf.setFillColor(text_color)
        pdf.setFont(FONT_NAME, FONT_SIZE)

    start_page()
    cursor_y = height - MARGIN
    for line in wrap_lines(lines):
        if cursor_y < MARGIN + FONT_SIZE:
            pdf.showPage()
            start_page()
            cursor_y = height - MARGIN
        pdf.drawString(MARGIN, cursor_y, line)
        cursor_y -= FONT_SIZE + LINE_GAP
    pdf.showPage()
    pdf.save()
    return list(PdfReader(BytesIO(buffer.getvalue())).pages)


def append_document(context: BuildContext, document: CandidateDocument, width: float, height: float) -> None:
    try:
        pages = list(PdfReader(BytesIO(document.content)).pages)
    except Exception as exc:
        logger.warning("Failed to attach matched document %s: %s", document.name, exc)
        pages = render_text_pages([FAILED_ATTACHMENT_NOTICE], width, height)
    for page in pages:
        context.add_page(page)


def append_placeholder(context: BuildContext, outcome: MatchOutcome, width: float, height: float) -> None:
    pages = render_text_pages(
        placeholder_lines(outcome.entry),
        width,
        height,
        background=PLACEHOLDER_BACKGROUND,
        text_color=white,
    )
    numbers = tuple(context.add_page(page) for page in pages)
    context.placeholders.append(
        PlaceholderDescriptor(
            pages=numbers,
            original_page=outcome.block.page,
            owner=outcome.block.holder_label,
            entry=outcome.entry,
        )
    )


def combine_statement(
    statement_pdf: bytes,
    uploads: Sequence[Tuple[str, bytes]],
    skip_pages: int = DEFAULT_SKIP_PAGES,
    fee_labels: Iterable[str] = DEFAULT_FEE_LABELS,
) -> CombineResult:
    report = build_report(extract_text(statement_pdf), skip_pages=skip_pages, fee_labels=fee_labels)
    statement = PdfReader(BytesIO(statement_pdf))
    page_total = len(statement.pages)

    pool = build_candidate_pool(uploads)
    outcomes = match_entries(
        ((block, entry) for block in report.pages if block.page <= page_total for entry in block.entries),
        pool,
    )
    outcomes_by_page: Dict[int, List[MatchOutcome]] = {}
    for outcome in outcomes:
        outcomes_by_page.setdefault(outcome.block.page, []).append(outcome)

    context = BuildContext()
    for page_no, page in enumerate(statement.pages, start=1):
        context.add_page(page)
        width = float(page.mediabox.width)
        height = float(page.mediabox.height)
        for outcome in outcomes_by_page.get(page_no, []):
            if outcome.document is not None:
                append_document(context, outcome.document, width, height)
            else:
                append_placeholder(context, outcome, width, height)

    logger.info(
        "Combined %d statement pages into %d pages, %d placeholders",
        page_total,
        context.page_count,
        len(context.placeholders),
    )
    return CombineResult(
        pdf_bytes=context.to_bytes(),
        report=report,
        outcomes=tuple(outcomes),
        placeholders=tuple(context.placeholders),
    )
