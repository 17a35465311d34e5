"""Match statement entries to supporting documents by date and amount.

Matching is first-fit over the pool in upload order. A document that has been
assigned to an entry is claimed and never considered again in the same run.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from functools import partial
from typing import Callable, FrozenSet, Iterable, List, Optional, Sequence, Set, Tuple

from statement_parser import Entry, ExtractionError, ReportedPage, date_variants, extract_text


logger = logging.getLogger(__name__)

DATE_BOUNDARY = (r"(?<![0-9])", r"(?![0-9])")
AMOUNT_BOUNDARY = (r"(?<![0-9.,%])", r"(?![0-9.,%])")


@dataclass(frozen=True)
class CandidateDocument:
    index: int
    name: str
    content: bytes = field(repr=False)
    text: str = field(repr=False)


@dataclass(frozen=True)
class MatchOutcome:
    entry: Entry
    block: ReportedPage
    document: Optional[CandidateDocument] = None

    @property
    def matched(self) -> bool:
        return self.document is not None


def build_candidate_pool(
    uploads: Iterable[Tuple[str, bytes]],
    extract: Callable[[bytes], str] = partial(extract_text, page_markers=False),
) -> List[CandidateDocument]:
    pool: List[CandidateDocument] = []
    for index, (name, content) in enumerate(uploads):
        try:
            text = extract(content)
        except ExtractionError as exc:
            logger.warning("Could not read candidate %s, keeping it with empty text: %s", name, exc)
            text = ""
        pool.append(CandidateDocument(index=index, name=name, content=content, text=text.lower()))
    logger.info("Built candidate pool with %d documents", len(pool))
    return pool


def entry_date_variants(entry: Entry) -> Set[str]:
    variants: Set[str] = set()
    for token in (entry.transaction_date, entry.posting_date):
        variants |= date_variants(token)
    return variants


def entry_amount_strings(entry: Entry) -> Set[str]:
    """Foreign amount when present, otherwise the booked amount, raw and as plain decimal."""
    raw = entry.foreign_amount_text or entry.amount_text
    if not raw:
        return set()
    raw = raw.lower()
    return {raw, raw.replace(".", "").replace(",", ".")}


def contains_bounded(text: str, needles: Iterable[str], boundary: Tuple[str, str]) -> bool:
    before, after = boundary
    for needle in needles:
        if re.search(before + re.escape(needle) + after, text):
            return True
    return False


def document_matches(text: str, dates: Set[str], amounts: Set[str]) -> bool:
    if dates and not contains_bounded(text, sorted(dates), DATE_BOUNDARY):
        return False
    if amounts and not contains_bounded(text, sorted(amounts), AMOUNT_BOUNDARY):
        return False
    return True


def match_entry(
    entry: Entry,
    pool: Sequence[CandidateDocument],
    claimed: FrozenSet[int] = frozenset(),
) -> Tuple[Optional[CandidateDocument], FrozenSet[int]]:
    dates = entry_date_variants(entry)
    amounts = entry_amount_strings(entry)
    for document in pool:
        if document.index in claimed:
            continue
        if document_matches(document.text, dates, amounts):
            return document, claimed | {document.index}
    return None, claimed


def match_entries(
    items: Iterable[Tuple[ReportedPage, Entry]],
    pool: Sequence[CandidateDocument],
) -> List[MatchOutcome]:
    claimed: FrozenSet[int] = frozenset()
    outcomes: List[MatchOutcome] = []
    for block, entry in items:
        document, claimed = match_entry(entry, pool, claimed)
        if document is None:
            logger.debug("No document for page %d entry %r", block.page, entry.raw)
        else:
            logger.debug("Page %d entry %r matched %s", block.page, entry.raw, document.name)
        outcomes.append(MatchOutcome(entry=entry, block=block, document=document))

    matched = sum(1 for o in outcomes if o.matched)
    logger.info("Matched %d of %d entries", matched, len(outcomes))
    return outcomes
