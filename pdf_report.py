# pdf_report.py
from datetime import datetime
from io import BytesIO
from pathlib import Path
from xml.sax.saxutils import escape

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt  # noqa: E402
from reportlab.lib import colors  # noqa: E402
from reportlab.lib.pagesizes import A4  # noqa: E402
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet  # noqa: E402
from reportlab.lib.units import cm  # noqa: E402
from reportlab.platypus import (  # noqa: E402
    Image,
    PageBreak,
    Paragraph,
    SimpleDocTemplate,
    Spacer,
    Table,
    TableStyle,
)

PAGE_SIZE = A4
MARGIN = 1.8 * cm
CHART_SIZE = (10, 3.6)
CHART_DPI = 150
DAILY_TABLE_TITLE = "Daily values"
FOOTER_TEXT = "Generated from an Apple Health export. Not a medical diagnosis."

STYLES = getSampleStyleSheet()
CELL_STYLE = ParagraphStyle(
    "CellWrap",
    parent=STYLES["BodyText"],
    fontSize=8.5,
    leading=10.5,
    wordWrap="LTR",
    splitLongWords=False,
)


# ---------- formatting ----------
def fmt_int(x) -> str:
    try:
        return f"{int(round(float(x))):,}"
    except (TypeError, ValueError):
        return "-"


def fmt_num(x, nd=1) -> str:
    try:
        value = float(x)
    except (TypeError, ValueError):
        return "-"
    if value != value:  # NaN
        return "-"
    return f"{value:.{nd}f}"


def fmt_pct(x) -> str:
    text = fmt_num(x, 1)
    return text if text == "-" else f"{text}%"


def fmt_date(x) -> str:
    if x is None or x != x:
        return "-"
    try:
        return x.strftime("%Y-%m-%d")
    except (AttributeError, ValueError):
        return str(x)


def fmt_time(x) -> str:
    try:
        return x.strftime("%H:%M")
    except (AttributeError, ValueError):
        return "-"


# ---------- flowables ----------
def heading(text, level=2):
    return Paragraph(text, STYLES[f"Heading{level}"])


def paragraph(text):
    return Paragraph(text, STYLES["BodyText"])


def doc_width():
    return PAGE_SIZE[0] - 2 * MARGIN


def make_table(data, col_fracs=None, repeat_header=True):
    """Grid table with a bold header row and zebra rows; long cells wrap."""
    width = doc_width()
    ncols = len(data[0])
    col_fracs = col_fracs or [1.0] * ncols
    total = sum(col_fracs)
    col_widths = [width * c / total for c in col_fracs]

    processed = []
    for r_i, row in enumerate(data):
        out_row = []
        for val in row:
            s = "" if val is None else str(val)
            if r_i != 0 and len(s) > 24:
                out_row.append(Paragraph(escape(s), CELL_STYLE))
            else:
                out_row.append(s)
        processed.append(out_row)

    t = Table(
        processed,
        colWidths=col_widths,
        hAlign="LEFT",
        repeatRows=1 if repeat_header else 0,
        splitByRow=1,
    )
    t.setStyle(
        TableStyle(
            [
                ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                ("FONTSIZE", (0, 0), (-1, 0), 9),
                ("FONTNAME", (0, 1), (-1, -1), "Helvetica"),
                ("FONTSIZE", (0, 1), (-1, -1), 8.5),
                ("BACKGROUND", (0, 0), (-1, 0), colors.whitesmoke),
                ("GRID", (0, 0), (-1, -1), 0.5, colors.grey),
                ("VALIGN", (0, 0), (-1, -1), "TOP"),
                ("TOPPADDING", (0, 0), (-1, -1), 3),
                ("BOTTOMPADDING", (0, 0), (-1, -1), 3),
                (
                    "ROWBACKGROUNDS",
                    (0, 1),
                    (-1, -1),
                    [colors.white, colors.Color(0.97, 0.97, 0.97)],
                ),
            ]
        )
    )
    return t


def kpi_table(rows):
    """rows: list of (label, value) pairs."""
    return make_table([["Metric", "Value"]] + [list(r) for r in rows], col_fracs=[0.6, 0.4])


def new_chart(figsize=CHART_SIZE):
    return plt.subplots(figsize=figsize)


def chart_image(fig, width=None):
    """Render a matplotlib figure to PNG in memory and wrap it for the story."""
    width = width or doc_width()
    fig_w, fig_h = fig.get_size_inches()
    buf = BytesIO()
    fig.tight_layout()
    fig.savefig(buf, format="png", dpi=CHART_DPI)
    plt.close(fig)
    buf.seek(0)
    return Image(buf, width=width, height=width * fig_h / fig_w)


def header_block(title, input_path, period=None):
    story = [Paragraph(title, STYLES["Title"])]
    meta = [f"Source: {escape(Path(input_path).name)}"]
    if period:
        start, end = period
        meta.append(f"Period: {fmt_date(start)} to {fmt_date(end)}")
    meta.append(f"Created: {datetime.now().strftime('%Y-%m-%d %H:%M')}")
    story.append(paragraph("<br/>".join(meta)))
    story.append(Spacer(1, 0.4 * cm))
    return story


def daily_section(data, col_fracs=None):
    return [PageBreak(), heading(DAILY_TABLE_TITLE), make_table(data, col_fracs=col_fracs)]


# ---------- output ----------
def _draw_footer(canvas, doc):
    canvas.saveState()
    canvas.setFont("Helvetica", 7.5)
    canvas.setFillColor(colors.grey)
    canvas.drawString(MARGIN, MARGIN / 2, FOOTER_TEXT)
    canvas.drawRightString(PAGE_SIZE[0] - MARGIN, MARGIN / 2, f"Page {doc.page}")
    canvas.restoreState()


def write_pdf(output_path, story, title):
    output_path = Path(output_path)
    if output_path.parent and not output_path.parent.exists():
        output_path.parent.mkdir(parents=True, exist_ok=True)
    doc = SimpleDocTemplate(
        str(output_path),
        pagesize=PAGE_SIZE,
        leftMargin=MARGIN,
        rightMargin=MARGIN,
        topMargin=MARGIN,
        bottomMargin=MARGIN,
        title=title,
    )
    doc.build(story, onFirstPage=_draw_footer, onLaterPages=_draw_footer)
    return output_path
