#!/usr/bin/env python3
"""Parse German credit card statement text into per-page transaction entries.

Unlike a strict statement parser this one is lenient: every line inside a
transaction table yields an Entry and fields that cannot be recognised stay
None. Page segmentation degrades to simpler splits instead of failing.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from io import BytesIO
from typing import Callable, Iterable, List, Optional, Sequence, Set, Tuple, TypeVar

from pypdf import PdfReader


logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_SKIP_PAGES = 2
DEFAULT_FEE_LABELS = ("manipulationsentgelt",)
HOLDER_SEARCH_LINES = 8

MONTH_ABBR = ("jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec")
MONTH_FULL = (
    "january",
    "february",
    "march",
    "april",
    "may",
    "june",
    "july",
    "august",
    "september",
    "october",
    "november",
    "december",
)

GROUPED_AMOUNT = r"[0-9]{1,3}(?:[.,][0-9]{3})*[.,][0-9]{2}"

PAGE_BREAK_RE = re.compile(r"--\s*\d+\s+of\s+\d+\s*--", re.IGNORECASE)
HEADER_RE = re.compile(r"Fremdwährung\s+Kurs\s+FW\s+Betrag\s+in\s+EUR", re.IGNORECASE)
FOOTER_RE = re.compile(r"Zwischensaldo|Aktueller Saldo", re.IGNORECASE)
HOLDER_RE = re.compile(r"(?:Karteninhaber|Kontoinhaber)[:\s\-]*([\w\s.,\-]+)", re.IGNORECASE)
NAME_LINE_RE = re.compile(r"[\w.\- ]+")
DATE_TOKEN_RE = re.compile(r"\b(\d{1,4}[.\-/]\d{1,2}[.\-/]\d{1,4})\b")
DATE_SPLIT_RE = re.compile(r"[.\-/]")
TRAILING_SIGN_AMOUNT_RE = re.compile(rf"({GROUPED_AMOUNT})\s*([+-])\s*$")
LEADING_SIGN_AMOUNT_RE = re.compile(rf"([+-])?\s*({GROUPED_AMOUNT})\s*(?:EUR|€)?\s*$", re.IGNORECASE)
FOREIGN_CURRENCY_RE = re.compile(
    rf"\b([A-Z]{{3}})\W*({GROUPED_AMOUNT})(?:\s*([-+]))?\W+([0-9]+[.,][0-9]+)\b"
)
CURRENCY_TOKEN_RE = re.compile(r"(?<!\w)(?:EUR|€)(?!\w)", re.IGNORECASE)
SUMMARY_LINE_RE = re.compile(r"Übertrag auf Rechnungsübersicht|Übertrag", re.IGNORECASE)
NUMBER_PREFIX_RE = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)")


class ExtractionError(RuntimeError):
    pass


@dataclass(frozen=True)
class RawPage:
    page: int
    lines: Tuple[str, ...]


@dataclass(frozen=True)
class PageBlock:
    page: int
    holder_label: str
    lines: Tuple[str, ...]


@dataclass(frozen=True)
class AmountMatch:
    text: str
    sign: Optional[str]


@dataclass(frozen=True)
class ForeignAmount:
    currency_code: str
    amount_text: str
    sign: Optional[str]
    rate_text: str
    matched_text: str


@dataclass(frozen=True)
class Entry:
    raw: str
    transaction_date: Optional[str] = None
    posting_date: Optional[str] = None
    amount_text: Optional[str] = None
    sign: Optional[str] = None
    amount_value: Optional[float] = None
    foreign_currency_code: Optional[str] = None
    foreign_amount_text: Optional[str] = None
    foreign_sign: Optional[str] = None
    foreign_amount_value: Optional[float] = None
    fx_rate_text: Optional[str] = None
    fx_rate_value: Optional[float] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class ReportedPage:
    page: int
    holder_label: str
    entries: Tuple[Entry, ...]


@dataclass(frozen=True)
class Report:
    detected_page_count: int
    pages: Tuple[ReportedPage, ...]


def squeeze_ws(value: str) -> str:
    return re.sub(r"\s+", " ", value).strip()


def first_success(strategies: Iterable[Callable[[str], Optional[T]]], value: str) -> Optional[T]:
    """Return the result of the first strategy that produces something."""
    for strategy in strategies:
        found = strategy(value)
        if found is not None:
            return found
    return None


# --- numbers ---------------------------------------------------------------


def normalize_number(text: Optional[str]) -> Optional[float]:
    """Convert a locale-formatted number to float.

    With both separators present ``.`` groups thousands and ``,`` is the
    decimal mark. A lone ``,`` is the decimal mark. A lone ``.`` is always
    treated as grouping, so ``"1.5"`` reads as 15.
    """
    if not text or not isinstance(text, str):
        return None
    token = re.sub(r"\s+", "", text)
    if "." in token and "," in token:
        token = token.replace(".", "").replace(",", ".")
    elif "," in token:
        token = token.replace(",", ".")
    else:
        token = token.replace(".", "")
    token = re.sub(r"[^0-9.\-+]", "", token)
    m = NUMBER_PREFIX_RE.match(token)
    if not m:
        return None
    try:
        return float(m.group(0))
    except ValueError:
        return None


def format_number(value: float) -> str:
    return f"{value:.2f}".replace(".", ",")


# --- dates -----------------------------------------------------------------


def date_variants(token: Optional[str]) -> Set[str]:
    """Return lower-cased renderings under which a date may appear in other documents."""
    if not token:
        return set()
    parts = [p.strip() for p in DATE_SPLIT_RE.split(token)]
    if len(parts) != 3:
        return {token.lower()}

    p1, p2, p3 = parts
    if len(p1) == 4:
        year, month, day = p1, p2, p3
    elif len(p3) == 4:
        day, month, year = p1, p2, p3
    else:
        return {token.lower()}

    dd = day.zfill(2)
    mm = month.zfill(2)
    variants: Set[str] = set()
    for sep in (".", "-", "/"):
        variants.add(f"{dd}{sep}{mm}{sep}{year}")
        variants.add(f"{mm}{sep}{dd}{sep}{year}")
        variants.add(f"{year}{sep}{mm}{sep}{dd}")

    month_no = int(month) if month.isdigit() else 0
    if 1 <= month_no <= 12:
        abbr = MONTH_ABBR[month_no - 1]
        full = MONTH_FULL[month_no - 1]
        # day before month: "31. aug 2025"
        variants.update(
            {
                f"{dd}. {abbr} {year}",
                f"{dd}. {abbr}. {year}",
                f"{dd} {abbr} {year}",
                f"{dd}. {full} {year}",
                f"{dd} {full} {year}",
            }
        )
        # month before day: "aug 31, 2025"
        variants.update(
            {
                f"{abbr} {dd}, {year}",
                f"{abbr} {dd} {year}",
                f"{abbr}. {dd}, {year}",
                f"{abbr}. {dd} {year}",
                f"{full} {dd}, {year}",
                f"{full} {dd} {year}",
                f"{full} {dd}. {year}",
            }
        )
    return {v.lower() for v in variants}


# --- entries ---------------------------------------------------------------


def extract_trailing_sign_amount(line: str) -> Optional[AmountMatch]:
    m = TRAILING_SIGN_AMOUNT_RE.search(line)
    if not m:
        return None
    return AmountMatch(text=m.group(1), sign=m.group(2))


def extract_leading_sign_amount(line: str) -> Optional[AmountMatch]:
    m = LEADING_SIGN_AMOUNT_RE.search(line)
    if not m:
        return None
    return AmountMatch(text=m.group(2), sign=m.group(1))


# The statement prints the sign after the amount, so that form wins.
AMOUNT_EXTRACTORS: Tuple[Callable[[str], Optional[AmountMatch]], ...] = (
    extract_trailing_sign_amount,
    extract_leading_sign_amount,
)


def extract_foreign_amount(line: str) -> Optional[ForeignAmount]:
    m = FOREIGN_CURRENCY_RE.search(line)
    if not m:
        return None
    code, amount_text, sign, rate_text = m.groups()
    return ForeignAmount(
        currency_code=code,
        amount_text=amount_text,
        sign=sign,
        rate_text=rate_text,
        matched_text=m.group(0),
    )


def residual_description(raw: str, fragments: Sequence[Optional[str]]) -> Optional[str]:
    text = raw
    for fragment in fragments:
        if fragment:
            text = text.replace(fragment, "", 1)
    text = CURRENCY_TOKEN_RE.sub("", text)
    return squeeze_ws(text) or None


def parse_entry(raw: str) -> Entry:
    dates = DATE_TOKEN_RE.findall(raw)
    transaction_date = dates[0] if dates else None
    posting_date = dates[1] if len(dates) > 1 else None

    amount = first_success(AMOUNT_EXTRACTORS, raw)
    foreign = extract_foreign_amount(raw)

    description = residual_description(
        raw,
        [
            transaction_date,
            posting_date,
            foreign.matched_text if foreign else None,
            amount.text if amount else None,
            amount.sign if amount else None,
        ],
    )

    return Entry(
        raw=raw,
        transaction_date=transaction_date,
        posting_date=posting_date,
        amount_text=amount.text if amount else None,
        sign=amount.sign if amount else None,
        amount_value=normalize_number(amount.text) if amount else None,
        foreign_currency_code=foreign.currency_code if foreign else None,
        foreign_amount_text=foreign.amount_text if foreign else None,
        foreign_sign=foreign.sign if foreign else None,
        foreign_amount_value=normalize_number(foreign.amount_text) if foreign else None,
        fx_rate_text=foreign.rate_text if foreign else None,
        fx_rate_value=normalize_number(foreign.rate_text) if foreign else None,
        description=description,
    )


def entry_to_json(entry: Entry) -> dict:
    return {
        "raw": entry.raw,
        "transactionDate": entry.transaction_date,
        "postingDate": entry.posting_date,
        "amountText": entry.amount_text,
        "sign": entry.sign,
        "amountValue": entry.amount_value,
        "foreignCurrencyCode": entry.foreign_currency_code,
        "foreignAmountText": entry.foreign_amount_text,
        "foreignSign": entry.foreign_sign,
        "foreignAmountValue": entry.foreign_amount_value,
        "fxRateText": entry.fx_rate_text,
        "fxRateValue": entry.fx_rate_value,
        "description": entry.description,
    }


# --- pages -----------------------------------------------------------------


def _non_empty_chunks(chunks: Iterable[str]) -> List[str]:
    return [c.strip() for c in chunks if c.strip()]


def _split_on_page_marker(text: str) -> Optional[List[str]]:
    if not PAGE_BREAK_RE.search(text):
        return None
    return _non_empty_chunks(PAGE_BREAK_RE.split(text)) or None


def _split_on_form_feed(text: str) -> Optional[List[str]]:
    if "\f" not in text:
        return None
    return _non_empty_chunks(text.split("\f")) or None


PAGE_SPLITTERS: Tuple[Callable[[str], Optional[List[str]]], ...] = (
    _split_on_page_marker,
    _split_on_form_feed,
)


def split_pages(full_text: str) -> List[RawPage]:
    chunks = first_success(PAGE_SPLITTERS, full_text) or [full_text]
    pages: List[RawPage] = []
    for page_no, chunk in enumerate(chunks, start=1):
        lines = tuple(ln.strip() for ln in chunk.splitlines() if ln.strip())
        pages.append(RawPage(page=page_no, lines=lines))
    return pages


def _first_index(lines: Sequence[str], pattern: re.Pattern, start: int = 0) -> Optional[int]:
    for idx in range(start, len(lines)):
        if pattern.search(lines[idx]):
            return idx
    return None


def locate_transaction_lines(lines: Sequence[str]) -> Tuple[str, ...]:
    header_idx = _first_index(lines, HEADER_RE)
    if header_idx is None:
        return ()
    footer_idx = _first_index(lines, FOOTER_RE, start=header_idx + 1)
    end = footer_idx if footer_idx is not None else len(lines)
    return tuple(lines[header_idx + 1 : end])


def is_name_like(line: str) -> bool:
    if not line or not line[0].isupper():
        return False
    if not NAME_LINE_RE.fullmatch(line):
        return False
    return sum(ch.isdigit() for ch in line) < 3


def resolve_holder_label(lines: Sequence[str], page: int) -> str:
    for line in lines[:HOLDER_SEARCH_LINES]:
        m = HOLDER_RE.search(line)
        if m and m.group(1).strip():
            return m.group(1).strip()
    for line in lines:
        if is_name_like(line):
            return line
    return f"Page-{page}-UNKNOWN"


def segment_pages(full_text: str) -> List[PageBlock]:
    blocks: List[PageBlock] = []
    for raw_page in split_pages(full_text or ""):
        blocks.append(
            PageBlock(
                page=raw_page.page,
                holder_label=resolve_holder_label(raw_page.lines, raw_page.page),
                lines=locate_transaction_lines(raw_page.lines),
            )
        )
    return blocks


# --- report ----------------------------------------------------------------


def is_transactional(entry: Entry, fee_labels: Iterable[str] = DEFAULT_FEE_LABELS) -> bool:
    haystack = entry.description or entry.raw or ""
    if SUMMARY_LINE_RE.search(haystack):
        return False
    label = (entry.description or "").strip().lower()
    return label not in {fl.strip().lower() for fl in fee_labels}


def build_report(
    full_text: str,
    skip_pages: int = DEFAULT_SKIP_PAGES,
    fee_labels: Iterable[str] = DEFAULT_FEE_LABELS,
) -> Report:
    labels = tuple(fee_labels)
    blocks = segment_pages(full_text)
    reported: List[ReportedPage] = []
    for block in blocks[skip_pages:]:
        entries = tuple(
            entry for entry in (parse_entry(line) for line in block.lines) if is_transactional(entry, labels)
        )
        reported.append(ReportedPage(page=block.page, holder_label=block.holder_label, entries=entries))

    logger.info(
        "Detected %d statement pages, reporting %d pages with %d entries",
        len(blocks),
        len(reported),
        sum(len(p.entries) for p in reported),
    )
    return Report(detected_page_count=len(blocks), pages=tuple(reported))


def report_to_json(report: Report) -> dict:
    return {
        "detectedPages": report.detected_page_count,
        "reportedPages": len(report.pages),
        "pages": [
            {
                "page": page.page,
                "name": page.holder_label,
                "entries": [entry_to_json(entry) for entry in page.entries],
            }
            for page in report.pages
        ],
    }


# --- pdf text --------------------------------------------------------------


def extract_text(pdf_bytes: bytes, page_markers: bool = True) -> str:
    """Extract plain text from a PDF.

    With ``page_markers`` every page is followed by a ``-- n of m --`` line,
    which is what ``split_pages`` looks for first.
    """
    try:
        reader = PdfReader(BytesIO(pdf_bytes))
        total = len(reader.pages)
        chunks: List[str] = []
        for page_no, page in enumerate(reader.pages, start=1):
            chunks.append(page.extract_text() or "")
            if page_markers:
                chunks.append(f"\n-- {page_no} of {total} --\n")
    except Exception as exc:
        raise ExtractionError(f"could not extract text from PDF: {exc}") from exc
    return "\n".join(chunks)
