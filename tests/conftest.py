from io import BytesIO
from typing import List, Sequence

import pytest
from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas


HEADER_LINE = "Umsatz vom Buchung am Rechnungstext Fremdwährung Kurs FW Betrag in EUR"
AMAZON_LINE = "01.01.2025 03.01.2025 AMAZON MARKETPLACE EUR 125,00-"


def make_pdf(pages: Sequence[Sequence[str]]) -> bytes:
    """Render each page's lines as plain Helvetica text."""
    buffer = BytesIO()
    pdf = canvas.Canvas(buffer, pagesize=A4)
    _, height = A4
    for lines in pages:
        pdf.setFont("Helvetica", 10)
        y = height - 60
        for line in lines:
            pdf.drawString(40, y, line)
            y -= 16
        pdf.showPage()
    pdf.save()
    return buffer.getvalue()


def statement_pages(transaction_lines: Sequence[str]) -> List[List[str]]:
    return [
        ["Kreditkartenabrechnung", "Karteninhaber: Max Mustermann", "Abrechnungsdatum 05.01.2025"],
        ["Rechnungsübersicht", "Karteninhaber: Max Mustermann", "Aktueller Saldo 125,00-"],
        [
            "Karteninhaber: Max Mustermann",
            HEADER_LINE,
            *transaction_lines,
            "Übertrag auf Rechnungsübersicht 125,00-",
            "Zwischensaldo 125,00-",
        ],
    ]


@pytest.fixture
def statement_pdf() -> bytes:
    return make_pdf(statement_pages([AMAZON_LINE]))


@pytest.fixture
def receipt_pdf() -> bytes:
    return make_pdf([["Amazon EU S.a r.l.", "Rechnungsdatum: 01.01.2025", "Gesamtbetrag: 125,00 EUR"]])


@pytest.fixture
def unrelated_pdf() -> bytes:
    return make_pdf([["Tankstelle", "Datum: 17.02.2025", "Summe: 61,40 EUR"]])


@pytest.fixture
def statement_text() -> str:
    pages = statement_pages([AMAZON_LINE])
    return "".join(
        "\n".join(lines) + f"\n\n-- {idx} of {len(pages)} --\n\n" for idx, lines in enumerate(pages, start=1)
    )
