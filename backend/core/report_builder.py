"""
report_builder.py — PDF and Excel rendering.

Generates:
- Report Forms PDF          (one page per student, scores, year summary, QR verification)
- Broadsheet PDF            (landscape student x learning-area grid with mean and rank)
- Broadsheet Excel          (same grid, colour-coded by band)
- Grade Distribution PDF    (stacked band chart and counts per pathway)
- Ranking PDF               (class and grade rankings with deviation)
- Subject Ranking PDF       (learning areas per class)

Every renderer takes the JSON payload produced by the core and returns bytes.
All PDFs carry a school name / date footer.
"""

import io
from datetime import datetime
from typing import Any, Dict, List, Optional
from xml.sax.saxutils import escape

import matplotlib
matplotlib.use("Agg")  # Non-interactive backend for server use
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils.dataframe import dataframe_to_rows
from reportlab.graphics.barcode.qr import QrCodeWidget
from reportlab.graphics.shapes import Drawing
from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import cm, mm
from reportlab.platypus import (
    Image,
    PageBreak,
    Paragraph,
    SimpleDocTemplate,
    Spacer,
    Table,
    TableStyle,
)

from core.cbc_grading import BAND_NAMES, GRADE_COLORS, band_rank


# ── Colour palette ──────────────────────────────────────────────────

BRAND_DARK  = colors.HexColor("#1a1a2e")
BRAND_ACCENT = colors.HexColor("#0f3460")
LIGHT_GREY  = colors.HexColor("#f5f5f5")
WHITE       = colors.white

DEVIATION_COLORS = {
    "green": colors.HexColor("#d5f5e3"),
    "red": colors.HexColor("#fadbd8"),
}


# ── Helpers ─────────────────────────────────────────────────────────

def _text(value: Any, default: str = "-") -> str:
    if value is None or value == "":
        return default
    return str(value)


def _fmt_num(value: Any, digits: int = 2) -> str:
    if value is None:
        return "-"
    try:
        return f"{float(value):.{digits}f}"
    except (TypeError, ValueError):
        return str(value)


def _footer(canvas, doc, school_name: str):
    """Draw school name and date in the page footer."""
    canvas.saveState()
    canvas.setFont("Helvetica", 8)
    canvas.setFillColor(colors.grey)
    footer_text = f"{school_name} — Generated {datetime.now().strftime('%d %B %Y, %H:%M')}"
    canvas.drawString(1.5 * cm, 1.0 * cm, footer_text)
    canvas.drawRightString(doc.pagesize[0] - 1.5 * cm, 1.0 * cm, f"Page {doc.page}")
    canvas.restoreState()


def _draw_security_marks(canvas):
    """Faint diagonal watermark behind report forms."""
    canvas.saveState()
    canvas.setFillColor(colors.Color(0.75, 0.75, 0.75, alpha=0.16))
    canvas.setFont("Helvetica-Bold", 34)
    canvas.translate(4.5 * cm, 13.5 * cm)
    canvas.rotate(32)
    canvas.drawString(0, 0, "OFFICIAL SCHOOL REPORT")
    canvas.restoreState()


def _chart_to_image(fig, width=14 * cm, height=8 * cm) -> Image:
    """Convert a matplotlib figure to a ReportLab Image."""
    buf = io.BytesIO()
    fig.savefig(buf, format="png", dpi=150, bbox_inches="tight")
    plt.close(fig)
    buf.seek(0)
    return Image(buf, width=width, height=height)


def _qr_code(value: str, size: float = 2.6 * cm) -> Drawing:
    widget = QrCodeWidget(value)
    x0, y0, x1, y1 = widget.getBounds()
    drawing = Drawing(size, size, transform=[size / (x1 - x0), 0, 0, size / (y1 - y0), 0, 0])
    drawing.add(widget)
    return drawing


def _styles():
    """Return custom paragraph styles."""
    ss = getSampleStyleSheet()
    return {
        "title": ParagraphStyle(
            "CustomTitle", parent=ss["Title"],
            fontSize=18, leading=22, textColor=BRAND_DARK,
            spaceAfter=2 * mm,
        ),
        "subtitle": ParagraphStyle(
            "CustomSubtitle", parent=ss["Normal"],
            fontSize=11, leading=14, textColor=BRAND_ACCENT,
            alignment=TA_CENTER, spaceAfter=3 * mm,
        ),
        "heading": ParagraphStyle(
            "CustomHeading", parent=ss["Heading2"],
            fontSize=12, leading=15, textColor=BRAND_DARK,
            spaceBefore=4 * mm, spaceAfter=2 * mm,
        ),
        "body": ParagraphStyle(
            "CustomBody", parent=ss["Normal"],
            fontSize=9, leading=12, textColor=colors.black,
            spaceAfter=2 * mm,
        ),
        "small": ParagraphStyle(
            "CustomSmall", parent=ss["Normal"],
            fontSize=7, leading=9, textColor=colors.grey,
        ),
    }


def _make_table(data: List[List], col_widths=None, header_color=BRAND_DARK, font_size=8, extra=None):
    """Create a styled table."""
    style_cmds = [
        ("BACKGROUND", (0, 0), (-1, 0), header_color),
        ("TEXTCOLOR", (0, 0), (-1, 0), WHITE),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, 0), font_size + 1),
        ("FONTSIZE", (0, 1), (-1, -1), font_size),
        ("ALIGN", (0, 0), (-1, -1), "CENTER"),
        ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
        ("GRID", (0, 0), (-1, -1), 0.5, colors.HexColor("#cccccc")),
        ("ROWBACKGROUNDS", (0, 1), (-1, -1), [WHITE, LIGHT_GREY]),
        ("TOPPADDING", (0, 0), (-1, -1), 3),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 3),
    ]
    style_cmds.extend(extra or [])
    t = Table(data, colWidths=col_widths, repeatRows=1)
    t.setStyle(TableStyle(style_cmds))
    return t


def _school_header(story: List, st: Dict[str, ParagraphStyle], school_name: str, lines: List[str]):
    story.append(Paragraph(escape(school_name), st["title"]))
    for line in lines:
        if line:
            story.append(Paragraph(escape(line), st["subtitle"]))


def _build(story: List, school_name: str, pagesize=A4, watermark: bool = False) -> bytes:
    buf = io.BytesIO()
    doc = SimpleDocTemplate(
        buf,
        pagesize=pagesize,
        leftMargin=1.5 * cm,
        rightMargin=1.5 * cm,
        topMargin=1.5 * cm,
        bottomMargin=2 * cm,
    )

    def on_page(canvas, d):
        if watermark:
            _draw_security_marks(canvas)
        _footer(canvas, d, school_name)

    doc.build(story, onFirstPage=on_page, onLaterPages=on_page)
    return buf.getvalue()


# ═══════════════════════════════════════════════════════════════════
# 1. REPORT FORMS PDF
# ═══════════════════════════════════════════════════════════════════

def generate_report_forms_pdf(report_forms: List[Dict[str, Any]], metadata: Dict[str, Any]) -> bytes:
    """One page per student."""
    st = _styles()
    school_name = metadata.get("schoolName") or "School"
    exam_scope = metadata.get("examScope") or []
    story: List = []

    for idx, form in enumerate(report_forms):
        _school_header(story, st, school_name, [
            metadata.get("schoolMotto"),
            f"{metadata.get('schoolLocation', '')} | {metadata.get('schoolContact', '')} | {metadata.get('schoolEmail', '')}",
            f"ACADEMIC REPORT FORM — {metadata.get('term')} {metadata.get('year')} ({metadata.get('examType')})",
        ])

        details = [
            ["Name", _text(form.get("name")), "Adm No", _text(form.get("admNo"))],
            ["Class", _text(form.get("class")), "Pathway", _text(form.get("pathway"))],
            ["Mean Score", _text(form.get("meanScore")), "Position", _text(form.get("position"))],
            ["Grade", _text(form.get("grade")), "Level", _text(form.get("level"))],
        ]
        info = Table(
            [[Table(details, colWidths=[2.6 * cm, 5.4 * cm, 2.4 * cm, 3.6 * cm]), _qr_code(form.get("verificationUrl") or "")]],
            colWidths=[14.5 * cm, 3.2 * cm],
        )
        info.setStyle(TableStyle([("VALIGN", (0, 0), (-1, -1), "MIDDLE")]))
        story.append(info)
        story.append(Spacer(1, 3 * mm))

        scores = [["Learning Area", *exam_scope, "Avg", "Grade", "Lvl", "Remark"]]
        for s in form.get("scores", []):
            exams = s.get("exams") or {}
            scores.append([
                Paragraph(escape(_text(s.get("learningArea"))), st["body"]),
                *[_text(exams.get(e)) for e in exam_scope],
                _text(s.get("total")),
                Paragraph(escape(_text(s.get("grade"))), st["small"]),
                _text(s.get("level")),
                Paragraph(escape(_text(s.get("remark"))), st["small"]),
            ])
        fixed = 3.8 * cm + 1.2 * cm + 3.4 * cm + 0.9 * cm + 5.0 * cm
        exam_width = max((18 * cm - fixed) / max(len(exam_scope), 1), 1.1 * cm)
        story.append(_make_table(
            scores,
            col_widths=[3.8 * cm, *[exam_width] * len(exam_scope), 1.2 * cm, 3.4 * cm, 0.9 * cm, 5.0 * cm],
        ))

        story.append(Paragraph("Year Summary", st["heading"]))
        summary = [["Grade", "Term 1", "Term 2", "Term 3", "Overall"]]
        for row in form.get("yearSummary", []):
            summary.append([
                row.get("grade"), row.get("Term 1"), row.get("Term 2"), row.get("Term 3"),
                Paragraph(escape(_text(row.get("overall"))), st["small"]),
            ])
        story.append(_make_table(summary, col_widths=[1.6 * cm, 3.8 * cm, 3.8 * cm, 3.8 * cm, 5.0 * cm], header_color=BRAND_ACCENT))

        story.append(Spacer(1, 3 * mm))
        story.append(Paragraph(f"<b>Summary:</b> {escape(_text(form.get('summaryRemark')))}", st["body"]))
        story.append(Paragraph(f"<b>Class Teacher:</b> {escape(_text(form.get('classTeacherComment')))}", st["body"]))
        story.append(Paragraph(f"<b>Principal:</b> {escape(_text(form.get('principalComment')))}", st["body"]))
        story.append(Paragraph("Scan the QR code to verify this report.", st["small"]))

        if idx < len(report_forms) - 1:
            story.append(PageBreak())

    return _build(story, school_name, watermark=True)


# ═══════════════════════════════════════════════════════════════════
# 2. BROADSHEET PDF / EXCEL
# ═══════════════════════════════════════════════════════════════════

def broadsheet_grid(payload: Dict[str, Any]) -> pd.DataFrame:
    """Pivot broadsheet rows into one row per student, one column per subject code."""
    subjects = payload.get("subjects") or []
    codes = {s["name"]: s["code"] for s in subjects}
    rows = payload.get("broadsheet") or []
    columns = ["Rank", "Adm No", "Name", "Class", *codes.values(), "Mean", "Grade", "Level"]
    if not rows:
        return pd.DataFrame(columns=columns)

    df = pd.DataFrame(rows)
    df["code"] = df["learningArea"].map(codes)
    df["score"] = df["score"].astype(object)
    scores = df.pivot(index="admNo", columns="code", values="score")
    students = df.drop_duplicates("admNo").set_index("admNo")

    grid = pd.DataFrame({
        "Rank": students["rank"],
        "Adm No": students.index,
        "Name": students["name"],
        "Class": students["class"],
    })
    for code in codes.values():
        grid[code] = scores[code] if code in scores.columns else "-"
    grid["Mean"] = students["meanScore"]
    grid["Grade"] = students["grade"]
    grid["Level"] = students["level"]
    if "pathway" in students.columns and students["pathway"].notna().any():
        grid.insert(4, "Pathway", students["pathway"])
    grid = grid.astype(object).where(grid.notna(), "-")
    return grid.reset_index(drop=True)


def generate_broadsheet_pdf(payload: Dict[str, Any]) -> bytes:
    st = _styles()
    school = payload.get("school") or {}
    school_name = school.get("name") or "School"
    story: List = []

    _school_header(story, st, school_name, [
        f"{payload.get('pathway')} BROADSHEET — {payload.get('classLabel')}",
        f"{payload.get('exam')} | {payload.get('term')} {payload.get('year')}",
    ])

    grid = broadsheet_grid(payload)
    if grid.empty:
        story.append(Paragraph("No students found for this broadsheet.", st["body"]))
        return _build(story, school_name, pagesize=landscape(A4))

    data = [list(grid.columns)] + [
        [Paragraph(escape(str(v)), st["small"]) if col in ("Name", "Grade", "Pathway") else _text(v) for col, v in zip(grid.columns, row)]
        for row in grid.itertuples(index=False)
    ]
    usable = landscape(A4)[0] - 3 * cm
    fixed = {"Rank": 1.0 * cm, "Adm No": 1.6 * cm, "Name": 3.6 * cm, "Class": 2.0 * cm,
             "Pathway": 2.6 * cm, "Mean": 1.2 * cm, "Grade": 3.2 * cm, "Level": 1.0 * cm}
    flexible = [c for c in grid.columns if c not in fixed]
    remaining = usable - sum(fixed[c] for c in grid.columns if c in fixed)
    flex_width = max(remaining / max(len(flexible), 1), 0.9 * cm)
    widths = [fixed.get(c, flex_width) for c in grid.columns]
    story.append(_make_table(data, col_widths=widths, font_size=7))

    story.append(Spacer(1, 4 * mm))
    legend = ", ".join(f"{s['code']} = {s['name']}" for s in payload.get("subjects") or [])
    story.append(Paragraph(escape(legend), st["small"]))
    return _build(story, school_name, pagesize=landscape(A4))


def generate_broadsheet_excel(payload: Dict[str, Any]) -> bytes:
    """Broadsheet grid as a workbook, rows filled by band colour."""
    grid = broadsheet_grid(payload)

    header_font = Font(bold=True, color="FFFFFF", size=11)
    header_fill = PatternFill(start_color="1a1a2e", end_color="1a1a2e", fill_type="solid")
    thin_border = Border(
        left=Side(style="thin"), right=Side(style="thin"),
        top=Side(style="thin"), bottom=Side(style="thin"),
    )

    wb = Workbook()
    ws = wb.active
    ws.title = str(payload.get("pathway") or "Broadsheet")[:28]
    ws.sheet_properties.tabColor = "1a1a2e"
    for row in dataframe_to_rows(grid, index=False, header=True):
        ws.append(row)

    for cell in ws[1]:
        cell.font = header_font
        cell.fill = header_fill
        cell.alignment = Alignment(horizontal="center")
        cell.border = thin_border

    grade_idx = list(grid.columns).index("Grade") if "Grade" in grid.columns else None
    for row in ws.iter_rows(min_row=2, max_row=ws.max_row):
        for cell in row:
            cell.border = thin_border
            cell.alignment = Alignment(horizontal="center")
        if grade_idx is not None and row[grade_idx].value in GRADE_COLORS:
            hex_color = GRADE_COLORS[row[grade_idx].value].lstrip("#")
            row[grade_idx].fill = PatternFill(start_color=hex_color, end_color=hex_color, fill_type="solid")
            row[grade_idx].font = Font(color="FFFFFF", bold=True)

    ws.freeze_panes = "E2"
    for col_cells in ws.columns:
        max_len = max(len(str(cell.value or "")) for cell in col_cells)
        ws.column_dimensions[col_cells[0].column_letter].width = min(max_len + 4, 30)

    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


# ═══════════════════════════════════════════════════════════════════
# 3. GRADE DISTRIBUTION PDF
# ═══════════════════════════════════════════════════════════════════

def _distribution_rows(distribution: Dict[str, Dict[str, Any]]) -> Dict[str, Dict[str, int]]:
    """Flatten cross-grade sub-tables into "Pathway / Grade n" rows."""
    rows = {}
    for pathway, bands in distribution.items():
        nested = {k: v for k, v in bands.items() if isinstance(v, dict)}
        if nested:
            for grade_label, sub in nested.items():
                rows[f"{pathway} / {grade_label}"] = {b: sub.get(b, 0) for b in BAND_NAMES}
        else:
            rows[pathway] = {b: bands.get(b, 0) for b in BAND_NAMES}
    return rows


def _stacked_band_chart(rows: Dict[str, Dict[str, int]], title: str) -> Optional[Image]:
    if not rows:
        return None
    labels = list(rows.keys())
    bottom = np.zeros(len(labels))

    fig, ax = plt.subplots(figsize=(9, 4.5))
    for band in sorted(BAND_NAMES, key=band_rank):
        values = np.array([rows[label][band] for label in labels], dtype=float)
        ax.bar(labels, values, bottom=bottom, label=band, color=GRADE_COLORS[band], edgecolor="white", linewidth=0.5)
        bottom += values

    ax.set_ylabel("Number of Students", fontsize=10)
    ax.set_title(title, fontsize=11, fontweight="bold", pad=12)
    ax.spines["top"].set_visible(False)
    ax.spines["right"].set_visible(False)
    ax.tick_params(axis="x", rotation=20, labelsize=8)
    ax.legend(fontsize=7, loc="upper left", bbox_to_anchor=(1.0, 1.0))
    fig.tight_layout()
    return _chart_to_image(fig, width=24 * cm, height=11 * cm)


def generate_distribution_pdf(payload: Dict[str, Any]) -> bytes:
    st = _styles()
    school = payload.get("school") or {}
    school_name = school.get("name") or "School"
    title = (payload.get("visual") or {}).get("title") or "CBC Grade Distribution"
    story: List = []

    lines = [title]
    if payload.get("stream"):
        lines.append(f"Stream: {payload['stream']}")
    _school_header(story, st, school_name, lines)

    rows = _distribution_rows(payload.get("distribution") or {})
    chart = _stacked_band_chart(rows, title)
    if chart:
        story.append(chart)
        story.append(Spacer(1, 4 * mm))

    data = [["Pathway", *[b.replace(" Expectations ", " ") for b in BAND_NAMES], "Total"]]
    for label, bands in rows.items():
        counts = [bands[b] for b in BAND_NAMES]
        data.append([label, *counts, sum(counts)])
    totals = payload.get("totals") or {}
    total_counts = [totals.get(b, 0) for b in BAND_NAMES]
    data.append(["Total", *total_counts, sum(total_counts)])
    story.append(_make_table(data, extra=[("FONTNAME", (0, -1), (-1, -1), "Helvetica-Bold")]))
    return _build(story, school_name, pagesize=landscape(A4))


# ═══════════════════════════════════════════════════════════════════
# 4. RANKING PDFs
# ═══════════════════════════════════════════════════════════════════

def _deviation_styles(rows: List[Dict[str, Any]], color_key: str, col: int) -> List:
    cmds = []
    for idx, row in enumerate(rows, start=1):
        bg = DEVIATION_COLORS.get(row.get(color_key))
        if bg is not None:
            cmds.append(("BACKGROUND", (col, idx), (col, idx), bg))
    return cmds


def generate_ranking_pdf(ranking: Dict[str, Any], metadata: Dict[str, Any]) -> bytes:
    st = _styles()
    school_name = metadata.get("schoolName") or "School"
    story: List = []
    _school_header(story, st, school_name, [
        f"CBC RANKING — {metadata.get('examType')} | {metadata.get('term')} {metadata.get('year')}",
        f"Compared with: {metadata['previousExam']}" if metadata.get("previousExam") else "",
    ])

    class_rows = ranking.get("classRanking") or []
    story.append(Paragraph("Class Ranking", st["heading"]))
    data = [["Pos", "Class", "Grade", "Entry", "Mean", "Band", "Prev", "Dev"]]
    for r in class_rows:
        data.append([
            r.get("position"), r.get("class"), r.get("grade"), r.get("entry"),
            _fmt_num(r.get("mean")), Paragraph(escape(_text(r.get("gradeLabel"))), st["small"]),
            _fmt_num(r.get("previousMean")), _fmt_num(r.get("deviation")),
        ])
    story.append(_make_table(data, col_widths=[1.1 * cm, 3.6 * cm, 1.4 * cm, 1.4 * cm, 1.8 * cm, 4.4 * cm, 1.8 * cm, 1.8 * cm],
                             extra=_deviation_styles(class_rows, "deviationColor", 7)))

    grade_rows = ranking.get("gradeRanking") or []
    story.append(Paragraph("Grade Ranking", st["heading"]))
    data = [["Pos", "Grade", "Entry", "Mean", "Band", "Prev", "Dev"]]
    for r in grade_rows:
        data.append([
            r.get("position"), r.get("grade"), r.get("entry"), _fmt_num(r.get("mean")),
            Paragraph(escape(_text(r.get("gradeLabel"))), st["small"]),
            _fmt_num(r.get("previousMean")), _fmt_num(r.get("deviation")),
        ])
    story.append(_make_table(data, col_widths=[1.1 * cm, 1.6 * cm, 1.6 * cm, 2.0 * cm, 5.0 * cm, 2.0 * cm, 2.0 * cm],
                             extra=_deviation_styles(grade_rows, "deviationColor", 6)))
    return _build(story, school_name)


def generate_subject_ranking_pdf(rows: List[Dict[str, Any]], metadata: Dict[str, Any], scope: str = "class") -> bytes:
    st = _styles()
    school_name = metadata.get("schoolName") or "School"
    story: List = []
    _school_header(story, st, school_name, [
        f"LEARNING AREA RANKING ({scope.upper()}) — {metadata.get('examType')} | {metadata.get('term')} {metadata.get('year')}",
    ])

    if not rows:
        story.append(Paragraph("No assessments recorded for this selection.", st["body"]))
        return _build(story, school_name)

    df = pd.DataFrame(rows)
    for class_name, class_df in df.groupby("class", sort=True):
        class_df = class_df.sort_values("overallRank")
        story.append(Paragraph(escape(f"Class {class_name}"), st["heading"]))
        data = [["Overall", "Group Rank", "Group", "Learning Area", "Entry", "Mean", "Prev", "Dev"]]
        records = class_df.to_dict("records")
        for r in records:
            data.append([
                r["overallRank"], r["rank"], _text(r["pathway"]), Paragraph(escape(_text(r["learningArea"])), st["small"]),
                r["entry"], _fmt_num(r["mean"]),
                _fmt_num(None if pd.isna(r["previousMean"]) else r["previousMean"]),
                _fmt_num(None if pd.isna(r["deviation"]) else r["deviation"]),
            ])
        story.append(_make_table(data, col_widths=[1.5 * cm, 1.8 * cm, 2.6 * cm, 4.6 * cm, 1.3 * cm, 1.6 * cm, 1.6 * cm, 1.6 * cm],
                                 extra=_deviation_styles(records, "color", 7)))
    return _build(story, school_name)
