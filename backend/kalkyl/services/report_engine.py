"""
Report Engine: export deliverables for a calculation.

Outputs:
  - Budget CSV (hierarchy in the leading Nivå 1/2/3 columns)
  - Calculation PDF (A4 landscape: header, summary box, indented cost table,
    options table, "Sida n/N" footers)
  - Calculation Excel workbook (Summary / Kostnadskalkyl / Optioner sheets,
    outline levels following the tree depth)

All outputs are written to DOWNLOAD_DIR and the path returned for FileResponse.
Amounts are always re-aggregated before rendering.
"""
import csv
import io
import logging
import math
import os
import re
import uuid
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Iterator, List, Optional, Tuple

from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.units import mm
from reportlab.pdfbase.pdfmetrics import stringWidth
from reportlab.pdfgen import canvas as rl_canvas

from kalkyl.config import settings
from kalkyl.services.aggregation_engine import FinancialSummary, aggregate, summarize
from kalkyl.services.calculation_model import Calculation

logger = logging.getLogger("kalkyl-report")

CSV_HEADER = ["Nivå 1", "Nivå 2", "Nivå 3", "Benämning", "Antal", "Enhet", "Pris/enhet", "Summa"]
TABLE_HEADER = ["Benämning", "Antal", "Enhet", "Pris/enhet", "CO2", "Summa", "Konto", "Anteckning"]
OPTIONS_HEADER = ["Nr", "BENÄMNING", "ANTAL", "ENHET", "PRIS/ENHET", "SUMMA"]

_NBSP = "\u00a0"


# ── Number formatting ──────────────────────────────────────────────────────────

def format_number(value: float) -> str:
    """Integer with sv-SE grouping: 1234567.6 -> '1 234 568' (non-breaking spaces)."""
    if value is None or not math.isfinite(value):
        return "0"
    rounded = int(math.floor(abs(value) + 0.5))
    text = f"{rounded:,}".replace(",", _NBSP)
    return f"-{text}" if value < 0 and rounded else text


def format_currency(value: float) -> str:
    return f"{format_number(value)} {settings.currency_suffix}"


def format_rate(rate: float) -> str:
    return f"{rate:g}"


def format_account(account: Optional[str], bookkeeping_accounts: Optional[Dict[str, str]] = None) -> str:
    """None -> ''; '4010' -> '4010 - Description' when the account is known."""
    if not account:
        return ""
    if not bookkeeping_accounts:
        return account
    number = account.split(" ")[0]
    description = bookkeeping_accounts.get(number)
    return f"{number} - {description}" if description else account


# ── Report rows ────────────────────────────────────────────────────────────────

@dataclass
class ReportRow:
    kind: str          # "level1" | "level2" | "level3" | "row"
    depth: int         # indentation level: 0/1/2 for levels, 2 or 3 for rows
    cells: List[str]   # formatted, in TABLE_HEADER order


def _walk(calc: Calculation, only_expanded: bool) -> Iterator[Tuple[str, int, Any]]:
    """(kind, depth, node) in display order over an aggregated tree."""
    for section in calc.sections:
        yield "level1", 0, section
        if only_expanded and not section.expanded:
            continue
        for sub in section.subsections:
            yield "level2", 1, sub
            if only_expanded and not sub.expanded:
                continue
            for row in sub.rows:
                yield "row", 2, row
            for sub_sub in sub.sub_subsections:
                yield "level3", 2, sub_sub
                if only_expanded and not sub_sub.expanded:
                    continue
                for row in sub_sub.rows:
                    yield "row", 3, row


def report_rows(
    calc: Calculation,
    only_expanded: bool = False,
    bookkeeping_accounts: Optional[Dict[str, str]] = None,
) -> List[ReportRow]:
    """
    Flatten the tree for tabular rendering.

    With only_expanded=True the children of collapsed nodes are skipped, which
    is what the A4 PDF shows; the node itself is still listed.
    """
    rows: List[ReportRow] = []
    for kind, depth, node in _walk(aggregate(calc), only_expanded):
        if kind == "row":
            cells = [
                node.description,
                format_number(node.quantity),
                node.unit,
                format_number(node.price_per_unit),
                format_number(node.co2),
                format_currency(node.line_total),
                format_account(node.account, bookkeeping_accounts),
                node.note,
            ]
        else:
            cells = [node.name, "", "", "", "", format_currency(node.amount), "", ""]
        rows.append(ReportRow(kind=kind, depth=depth, cells=cells))
    return rows


def csv_rows(calc: Calculation) -> List[List[str]]:
    """One line per section, subsection, sub-subsection and row; ancestors lead."""
    agg = aggregate(calc)
    lines: List[List[str]] = []

    def _row_line(l1: str, l2: str, l3: str, row) -> List[str]:
        return [
            l1, l2, l3, row.description,
            format_number(row.quantity), row.unit,
            format_currency(row.price_per_unit), format_currency(row.line_total),
        ]

    for section in agg.sections:
        lines.append([section.name, "", "", "", "", "", "", format_currency(section.amount)])
        for sub in section.subsections:
            lines.append([section.name, sub.name, "", "", "", "", "", format_currency(sub.amount)])
            for row in sub.rows:
                lines.append(_row_line(section.name, sub.name, "", row))
            for sub_sub in sub.sub_subsections:
                lines.append([section.name, sub.name, sub_sub.name, "", "", "", "", format_currency(sub_sub.amount)])
                for row in sub_sub.rows:
                    lines.append(_row_line(section.name, sub.name, sub_sub.name, row))
    return lines


def render_csv(calc: Calculation) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    writer.writerows(csv_rows(calc))
    return buf.getvalue()


def summary_items(calc: Calculation, summary: FinancialSummary) -> List[Tuple[str, str]]:
    """Label/value pairs of the summary box, in display order."""
    rate = format_rate(calc.rate)
    return [
        ("Arvode (%)", f"{rate}%"),
        ("Area (kvm)", format_number(calc.area)),
        ("CO2 Budget", f"{format_number(calc.co2_budget)} kg/kvm"),
        ("Budget exkl. arvode", format_currency(summary.budget_excl_rate)),
        (f"Fastarvode {rate}%", format_currency(summary.fixed_rate)),
        ("Anbudssumma", format_currency(summary.bid_amount)),
    ]


def _safe_filename(name: str, fallback: str = "kalkyl") -> str:
    cleaned = re.sub(r"[^\w\-]+", "_", name.strip()).strip("_")
    return cleaned or fallback


def export_filename(
    calc: Calculation,
    fmt: str,
    report_date: Optional[date] = None,
    only_expanded: bool = True,
) -> str:
    """Download name shown to the user, e.g. ``Villa_Ekbacken_2024-03-01.pdf``."""
    base = _safe_filename(calc.name)
    if fmt == "csv":
        return f"{base}_budget.csv"
    if fmt == "pdf":
        day = (report_date or date.today()).isoformat()
        suffix = "" if only_expanded else "_full"
        return f"{base}_{day}{suffix}.pdf"
    if fmt == "xlsx":
        return f"{base}.xlsx"
    raise ValueError(f"Unsupported export format: {fmt}")


# ── PDF helpers ────────────────────────────────────────────────────────────────

_PAGE_W, _PAGE_H = landscape(A4)
_MARGIN = 15 * mm
_ROW_H = 5.5 * mm
_FONT_SIZE = 8

_TABLE_WIDTHS = [0.28, 0.08, 0.07, 0.11, 0.08, 0.14, 0.12, 0.12]
_TABLE_ALIGN = ["L", "R", "L", "R", "R", "R", "L", "L"]
_OPTIONS_WIDTHS = [0.06, 0.39, 0.12, 0.12, 0.15, 0.16]
_OPTIONS_ALIGN = ["R", "L", "R", "L", "R", "R"]

_KIND_FILL = {
    "level1": (245 / 255, 245 / 255, 245 / 255),
    "level2": (1, 1, 1),
    "level3": (252 / 255, 252 / 255, 252 / 255),
}


def _draw_footer(c, page_num: int, page_count: int):
    c.saveState()
    c.setFont("Helvetica", 8)
    c.setFillColorRGB(120 / 255, 120 / 255, 120 / 255)
    c.drawString(_MARGIN, 8 * mm, "Publik")
    c.drawRightString(_PAGE_W - _MARGIN, 8 * mm, f"Sida {page_num}/{page_count}")
    c.restoreState()


class _NumberedCanvas(rl_canvas.Canvas):
    """Canvas that defers footers until the page count is known."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._saved_page_states = []

    def showPage(self):
        self._saved_page_states.append(dict(self.__dict__))
        self._startPage()

    def save(self):
        page_count = len(self._saved_page_states)
        for state in self._saved_page_states:
            self.__dict__.update(state)
            _draw_footer(self, self._pageNumber, page_count)
            super().showPage()
        super().save()


def _fit(text: str, width: float, font: str, size: float) -> str:
    if stringWidth(text, font, size) <= width:
        return text
    while text and stringWidth(text + "…", font, size) > width:
        text = text[:-1]
    return text + "…" if text else ""


class _PdfTable:
    """Draws a grid table with page breaks and a repeated header row."""

    def __init__(self, c, header: List[str], fractions: List[float], align: List[str]):
        self.c = c
        self.header = header
        width = _PAGE_W - 2 * _MARGIN
        self.widths = [f * width for f in fractions]
        self.align = align

    def _cell(self, x: float, y: float, w: float, text: str, align: str, font: str, indent: float = 0.0):
        pad = 2 * mm
        self.c.setFont(font, _FONT_SIZE)
        text = _fit(text, w - 2 * pad - indent, font, _FONT_SIZE)
        baseline = y + (_ROW_H - _FONT_SIZE) / 2 + 1
        if align == "R":
            self.c.drawRightString(x + w - pad, baseline, text)
        else:
            self.c.drawString(x + pad + indent, baseline, text)

    def _line(self, y: float, cells: List[str], fill, font: str, indent: float = 0.0) -> None:
        c = self.c
        x = _MARGIN
        c.setStrokeColorRGB(200 / 255, 200 / 255, 200 / 255)
        c.setLineWidth(0.3)
        for i, w in enumerate(self.widths):
            c.setFillColorRGB(*fill)
            c.rect(x, y, w, _ROW_H, fill=1, stroke=1)
            c.setFillColorRGB(0, 0, 0)
            self._cell(x, y, w, cells[i] if i < len(cells) else "", self.align[i], font,
                       indent if i == 0 else 0.0)
            x += w

    def _header(self, y: float) -> float:
        y -= _ROW_H
        self._line(y, self.header, (240 / 255, 240 / 255, 240 / 255), "Helvetica-Bold")
        return y

    def draw(self, y: float, rows: List[Tuple[List[str], str, int]]) -> float:
        """rows: (cells, kind, depth). Returns the y below the table."""
        y = self._header(y)
        for cells, kind, depth in rows:
            if y - _ROW_H < _MARGIN + 8 * mm:
                self.c.showPage()
                y = self._header(_PAGE_H - _MARGIN)
            y -= _ROW_H
            font = "Helvetica" if kind == "row" else "Helvetica-Bold"
            self._line(y, cells, _KIND_FILL.get(kind, (1, 1, 1)), font, indent=depth * 4 * mm)
        return y


class ReportEngine:

    def __init__(
        self,
        download_dir: Optional[str] = None,
        bookkeeping_accounts: Optional[Dict[str, str]] = None,
    ):
        self.download_dir = download_dir or settings.download_dir
        self.bookkeeping_accounts = bookkeeping_accounts or {}

    def _output_path(self, filename: str) -> str:
        """Unique file in download_dir; concurrent exports of the same name never collide."""
        os.makedirs(self.download_dir, exist_ok=True)
        return os.path.join(self.download_dir, f"{uuid.uuid4().hex}_{filename}")

    def generate(self, calc: Calculation, fmt: str, **kwargs) -> Optional[str]:
        """Dispatch on fmt: "csv" | "pdf" | "xlsx". Returns the output path or None."""
        if fmt == "csv":
            return self.generate_csv(calc)
        if fmt == "pdf":
            return self.generate_pdf(calc, **kwargs)
        if fmt == "xlsx":
            return self.generate_xlsx(calc)
        raise ValueError(f"Unsupported export format: {fmt}")

    # ── CSV ───────────────────────────────────────────────────────────────────

    def generate_csv(self, calc: Calculation) -> Optional[str]:
        try:
            path = self._output_path(export_filename(calc, "csv"))
            with open(path, "w", encoding="utf-8", newline="") as f:
                f.write(render_csv(calc))
            logger.info(f"Budget CSV generated: {path}")
            return path
        except OSError as e:
            logger.error(f"Budget CSV generation failed: {e}")
            return None

    # ── PDF ───────────────────────────────────────────────────────────────────

    def generate_pdf(
        self,
        calc: Calculation,
        created_by: Optional[str] = None,
        report_date: Optional[date] = None,
        only_expanded: bool = True,
    ) -> Optional[str]:
        c = None
        path = None
        try:
            report_date = report_date or date.today()
            day = report_date.isoformat()
            path = self._output_path(export_filename(calc, "pdf", report_date, only_expanded))
            c = _NumberedCanvas(path, pagesize=(_PAGE_W, _PAGE_H))
            c.setTitle(calc.name or "Kalkyl")

            summary = summarize(calc)
            y = _PAGE_H - _MARGIN

            # Header
            c.setFillColorRGB(0, 0, 0)
            c.setFont("Helvetica-Bold", 18)
            c.drawString(_MARGIN, y - 8 * mm, calc.name or "Kalkyl")
            c.setFont("Helvetica", 9)
            c.setFillColorRGB(100 / 255, 100 / 255, 100 / 255)
            c.drawString(_MARGIN, y - 14 * mm, day)
            author = created_by or calc.created_by
            if author:
                c.drawString(_MARGIN, y - 18 * mm, f"Skapad av: {author}")
            y -= 22 * mm

            # Summary box, 3 x 2
            box_w = _PAGE_W - 2 * _MARGIN
            box_h = 36 * mm
            c.setStrokeColorRGB(200 / 255, 200 / 255, 200 / 255)
            c.setLineWidth(0.5)
            c.rect(_MARGIN, y - box_h, box_w, box_h, fill=0, stroke=1)
            col_w = box_w / 3
            for i, (label, value) in enumerate(summary_items(calc, summary)):
                col, line = i % 3, i // 3
                x = _MARGIN + col * col_w + 8 * mm
                label_y = y - (9 if line == 0 else 23) * mm
                value_y = y - (17 if line == 0 else 30) * mm
                accent = label == "Anbudssumma"
                c.setFont("Helvetica", 9)
                if accent:
                    c.setFillColorRGB(0, 100 / 255, 200 / 255)
                else:
                    c.setFillColorRGB(100 / 255, 100 / 255, 100 / 255)
                c.drawString(x, label_y, label)
                c.setFont("Helvetica-Bold", 14)
                if not accent:
                    c.setFillColorRGB(0, 0, 0)
                c.drawString(x, value_y, value)
            y -= box_h + 2 * mm

            # Cost table
            c.setFillColorRGB(0, 0, 0)
            c.setFont("Helvetica-Bold", 14)
            c.drawString(_MARGIN, y - 7 * mm, "Kostnadskalkyl")
            y -= 10 * mm
            rows = report_rows(calc, only_expanded=only_expanded, bookkeeping_accounts=self.bookkeeping_accounts)
            table = _PdfTable(c, TABLE_HEADER, _TABLE_WIDTHS, _TABLE_ALIGN)
            y = table.draw(y, [(r.cells, r.kind, r.depth) for r in rows])
            y -= 6 * mm

            # Options
            if calc.options:
                if y < 40 * mm:
                    c.showPage()
                    y = _PAGE_H - _MARGIN
                c.setFillColorRGB(0, 0, 0)
                c.setFont("Helvetica-Bold", 12)
                c.drawString(_MARGIN, y - 8 * mm, "Optioner")
                y -= 15 * mm
                c.setFont("Helvetica", 9)
                c.setFillColorRGB(100 / 255, 100 / 255, 100 / 255)
                c.drawString(
                    _MARGIN, y - 1 * mm,
                    f"Samtliga optioner är exklusive {format_rate(calc.rate)}% entreprenörsarvode",
                )
                y -= 2 * mm
                option_rows = [
                    ([
                        str(idx),
                        option.description,
                        format_number(option.quantity),
                        option.unit,
                        format_number(option.price_per_unit),
                        format_currency(option.line_total),
                    ], "row", 0)
                    for idx, option in enumerate(calc.options, start=1)
                ]
                _PdfTable(c, OPTIONS_HEADER, _OPTIONS_WIDTHS, _OPTIONS_ALIGN).draw(y, option_rows)

            c.showPage()
            c.save()
            logger.info(f"Calculation PDF generated: {path} ({len(rows)} table rows)")
            return path

        except Exception as e:
            logger.error(f"Calculation PDF generation failed: {e}", exc_info=True)
            return None

    # ── Excel ─────────────────────────────────────────────────────────────────

    def generate_xlsx(self, calc: Calculation) -> Optional[str]:
        try:
            import xlsxwriter

            path = self._output_path(export_filename(calc, "xlsx"))
            wb = xlsxwriter.Workbook(path)

            hdr = wb.add_format({"bold": True, "bg_color": "#F0F0F0", "border": 1, "font_size": 10})
            title_fmt = wb.add_format({"bold": True, "font_size": 14})
            normal = wb.add_format({"border": 1, "font_size": 9})
            money = wb.add_format({"num_format": "#,##0", "border": 1, "font_size": 9})
            level_fmt = {
                "level1": wb.add_format({"bold": True, "bg_color": "#F5F5F5", "border": 1, "font_size": 9}),
                "level2": wb.add_format({"bold": True, "border": 1, "font_size": 9}),
                "level3": wb.add_format({"bold": True, "bg_color": "#FCFCFC", "border": 1, "font_size": 9}),
            }
            level_money = {
                kind: wb.add_format({"bold": True, "num_format": "#,##0", "border": 1, "font_size": 9,
                                     **({"bg_color": bg} if bg else {})})
                for kind, bg in (("level1", "#F5F5F5"), ("level2", None), ("level3", "#FCFCFC"))
            }
            accent = wb.add_format({"bold": True, "font_color": "#0064C8", "border": 1})

            summary = summarize(calc)
            agg = aggregate(calc)

            # ── Sheet 1: Summary ─────────────────────────────────────────────
            ws = wb.add_worksheet("Summary")
            ws.set_column("A:A", 30)
            ws.set_column("B:B", 22)
            ws.write("A1", calc.name or "Kalkyl", title_fmt)
            ws.write("A2", f"Projekt: {calc.project}", normal)
            ws.write("A3", f"Skapad: {date.today().isoformat()}", normal)
            ws.write_row(4, 0, ["Post", "Värde"], hdr)
            for i, (label, value) in enumerate(summary_items(calc, summary)):
                ws.write(5 + i, 0, label, normal)
                ws.write(5 + i, 1, value, accent if label == "Anbudssumma" else normal)
            ws.write(12, 0, "Total CO2 (kg)", normal)
            ws.write(12, 1, format_number(summary.total_co2), normal)
            ws.write(13, 0, "CO2 budget (kg)", normal)
            ws.write(13, 1, format_number(summary.co2_budget_total), normal)
            if summary.exceeds_budget:
                ws.write(14, 0, "Överskridande (kg)", normal)
                ws.write(14, 1, format_number(summary.co2_overshoot), accent)

            # ── Sheet 2: Cost table ──────────────────────────────────────────
            ws2 = wb.add_worksheet("Kostnadskalkyl")
            ws2.set_column("A:A", 40)
            ws2.set_column("B:F", 12)
            ws2.set_column("G:H", 24)
            ws2.write_row(0, 0, TABLE_HEADER, hdr)
            ws2.outline_settings(True, False, True, False)
            for i, (kind, depth, node) in enumerate(_walk(agg, only_expanded=False), start=1):
                ws2.set_row(i, None, None, {"level": min(depth, 7)})
                indent = "    " * depth
                if kind == "row":
                    ws2.write(i, 0, f"{indent}{node.description}", normal)
                    ws2.write_number(i, 1, node.quantity, money)
                    ws2.write(i, 2, node.unit, normal)
                    ws2.write_number(i, 3, node.price_per_unit, money)
                    ws2.write_number(i, 4, node.co2, money)
                    ws2.write_number(i, 5, node.line_total, money)
                    ws2.write(i, 6, format_account(node.account, self.bookkeeping_accounts), normal)
                    ws2.write(i, 7, node.note, normal)
                else:
                    ws2.write(i, 0, f"{indent}{node.name}", level_fmt[kind])
                    ws2.write_number(i, 5, node.amount, level_money[kind])

            # ── Sheet 3: Options ─────────────────────────────────────────────
            ws3 = wb.add_worksheet("Optioner")
            ws3.set_column("A:A", 6)
            ws3.set_column("B:B", 40)
            ws3.set_column("C:F", 14)
            ws3.write_row(0, 0, OPTIONS_HEADER, hdr)
            for i, option in enumerate(agg.options, start=1):
                ws3.write_number(i, 0, i, normal)
                ws3.write(i, 1, option.description, normal)
                ws3.write_number(i, 2, option.quantity, money)
                ws3.write(i, 3, option.unit, normal)
                ws3.write_number(i, 4, option.price_per_unit, money)
                ws3.write_number(i, 5, option.line_total, money)
            ws3.write(len(agg.options) + 2, 1,
                      f"Samtliga optioner är exklusive {format_rate(calc.rate)}% entreprenörsarvode", normal)

            wb.close()
            logger.info(f"Calculation Excel generated: {path}")
            return path

        except Exception as e:
            logger.error(f"Calculation Excel generation failed: {e}", exc_info=True)
            return None
