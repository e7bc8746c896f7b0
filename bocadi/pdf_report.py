"""
Weekly nutrition report rendered with ReportLab.

Five sections, always in this order and each starting on its own page:

1. Cover: patient/workspace, period, nutritionist and a quick summary
2. Executive summary: macro cards, energy distribution, semaphore table
3. Daily detail: dishes per day with subtotals and the weekly total
4. Micronutrients: semaphore table plus the band legend
5. Protein balance: bars per protein type and a summary table

Pages after the cover carry a header band (brand + page number); every
page carries a footer with the generation time and the requester.

Rendering is all-or-nothing: any error propagates and no bytes are returned.
"""

import datetime
import io
import logging
import os
import platform
import re
from dataclasses import dataclass, field
from typing import List, Optional
from xml.sax.saxutils import escape

import requests
from reportlab.graphics.shapes import Circle, Drawing, Rect, String
from reportlab.lib import colors
from reportlab.lib.colors import HexColor
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFont
from reportlab.platypus import (
    BaseDocTemplate,
    Frame,
    NextPageTemplate,
    PageBreak,
    PageTemplate,
    Paragraph,
    Spacer,
    Table,
    TableStyle,
)
from reportlab.platypus.flowables import HRFlowable

from .aggregation import (
    DAY_LABELS,
    DAYS,
    DEFAULT_REFERENCE,
    MACRO_KEYS,
    MICRO_KEYS,
    NutritionReference,
    Semaphore,
    dish_total,
    entries_for_day,
    macro_energy_distribution,
    nutrient_status,
    per_protein_type,
    totals,
)

logger = logging.getLogger(__name__)

PAGE_WIDTH, PAGE_HEIGHT = A4
MARGIN = 15 * mm
CONTENT_WIDTH = PAGE_WIDTH - 2 * MARGIN
HEADER_HEIGHT = 12 * mm
COVER_BAND_HEIGHT = 70 * mm
FOOTER_HEIGHT = 14 * mm

PRIMARY = HexColor('#06B6D4')
DARK = HexColor('#0F172A')
GRAY = HexColor('#64748B')
LIGHT = HexColor('#F1F5F9')

ENERGY_COLORS = {
    'protein_g': HexColor('#6366F1'),
    'carbs_g': HexColor('#FBBF24'),
    'fat_g': HexColor('#EF4444'),
}

LEGEND = (
    (Semaphore.OPTIMAL, 'Óptimo: 80-120% del valor de referencia'),
    (Semaphore.REVIEW, 'Revisar: 50-79% o 121-150%'),
    (Semaphore.CRITICAL, 'Crítico: < 50% o > 150%'),
)

_fonts = None


def _register_fonts():
    """Register a Unicode TTF family if one is installed; Helvetica otherwise."""
    global _fonts
    if _fonts is not None:
        return _fonts

    if platform.system() == "Windows":
        candidates = [(r"C:\Windows\Fonts\arial.ttf", r"C:\Windows\Fonts\arialbd.ttf")]
    elif platform.system() == "Darwin":
        candidates = [("/Library/Fonts/Arial.ttf", "/Library/Fonts/Arial Bold.ttf")]
    else:
        candidates = [
            ("/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
             "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf"),
            ("/usr/share/fonts/truetype/liberation/LiberationSans-Regular.ttf",
             "/usr/share/fonts/truetype/liberation/LiberationSans-Bold.ttf"),
        ]

    for regular_path, bold_path in candidates:
        if not os.path.exists(regular_path):
            continue
        try:
            pdfmetrics.registerFont(TTFont('BocadiSans', regular_path))
            bold = 'BocadiSans'
            if os.path.exists(bold_path):
                pdfmetrics.registerFont(TTFont('BocadiSans-Bold', bold_path))
                bold = 'BocadiSans-Bold'
            pdfmetrics.registerFontFamily(
                'BocadiSans', normal='BocadiSans', bold=bold, italic='BocadiSans', boldItalic=bold
            )
            logger.info(f"Registered report font: {regular_path}")
            _fonts = ('BocadiSans', bold)
            return _fonts
        except Exception as e:
            logger.warning(f"Failed to register font {regular_path}: {e}")

    _fonts = ('Helvetica', 'Helvetica-Bold')
    return _fonts


@dataclass
class ReportOptions:
    entries: list
    week_start: datetime.date
    week_end: datetime.date
    workspace_name: str
    user_email: str = ''
    nutritionist: Optional[dict] = None
    brand: str = 'bocadi'
    generated_at: Optional[datetime.datetime] = None
    reference: NutritionReference = field(default=DEFAULT_REFERENCE)


@dataclass
class DetailRow:
    """One row of the daily detail table."""
    kind: str  # 'dish', 'subtotal' or 'total'
    day: str
    dish: str
    kcal: float
    protein_g: float
    carbs_g: float
    fat_g: float

    def cells(self) -> list:
        return [
            round(self.kcal),
            f"{self.protein_g:.1f}g",
            f"{self.carbs_g:.1f}g",
            f"{self.fat_g:.1f}g",
        ]


def sanitize_name(name: str) -> str:
    return re.sub(r'[^a-z0-9]', '-', (name or '').lower())


def report_filename(workspace_name, week_start, week_end, brand='bocadi') -> str:
    return f"{brand}-reporte-{sanitize_name(workspace_name)}-{week_start.isoformat()}_{week_end.isoformat()}.pdf"


def format_date(day) -> str:
    return day.strftime('%d/%m/%Y')


def daily_detail_rows(entries) -> List[DetailRow]:
    """
    Rows for the daily detail table, Monday to Sunday.

    Days without entries are left out entirely; every other day gets one
    row per dish followed by its subtotal. The weekly total closes the list.
    """
    rows = []
    for day in DAYS:
        day_entries = entries_for_day(entries, day)
        if not day_entries:
            continue
        label = DAY_LABELS[day]
        for entry in day_entries:
            dish = entry.get('dish') or {}
            rows.append(DetailRow('dish', label, dish.get('name', ''),
                                  *(dish_total(dish, key) for key in MACRO_KEYS)))
        day_totals = totals(day_entries)
        rows.append(DetailRow('subtotal', label, '', *(day_totals[key] for key in MACRO_KEYS)))

    week_totals = totals(entries)
    rows.append(DetailRow('total', '', '', *(week_totals[key] for key in MACRO_KEYS)))
    return rows


def _load_logo(url):
    if not url:
        return None
    try:
        response = requests.get(url, timeout=5)
        response.raise_for_status()
        return ImageReader(io.BytesIO(response.content))
    except Exception as e:
        logger.warning(f"⚠️ Could not load nutritionist logo {url}: {e}")
        return None


class _ReportBuilder:
    """Holds styles and per-report state while the story is assembled."""

    def __init__(self, options: ReportOptions):
        self.options = options
        self.reference = options.reference
        self.generated_at = options.generated_at or datetime.datetime.now()
        self.font, self.bold_font = _register_fonts()
        self.week_totals = totals(options.entries)
        self.nutritionist = options.nutritionist or {}
        self.logo = _load_logo(self.nutritionist.get('logo_url'))

        styles = getSampleStyleSheet()
        base = ParagraphStyle('Base', parent=styles['Normal'], fontName=self.font,
                              fontSize=9, leading=12, textColor=DARK)
        self.styles = {
            'base': base,
            'cover_title': ParagraphStyle('CoverTitle', parent=base, fontName=self.bold_font,
                                          fontSize=20, leading=24, spaceAfter=10),
            'cover_line': ParagraphStyle('CoverLine', parent=base, fontSize=11, leading=16,
                                         textColor=GRAY),
            'section_title': ParagraphStyle('SectionTitle', parent=base, fontName=self.bold_font,
                                            fontSize=13, leading=16, spaceAfter=2),
            'heading': ParagraphStyle('Heading', parent=base, fontName=self.bold_font,
                                      fontSize=10, leading=13, spaceBefore=8, spaceAfter=4),
            'small': ParagraphStyle('Small', parent=base, fontSize=8, leading=10, textColor=GRAY),
            'card_label': ParagraphStyle('CardLabel', parent=base, fontSize=8, leading=10,
                                         textColor=GRAY, alignment=TA_CENTER),
            'card_value': ParagraphStyle('CardValue', parent=base, fontName=self.bold_font,
                                         fontSize=14, leading=18, alignment=TA_CENTER),
            'card_note': ParagraphStyle('CardNote', parent=base, fontSize=7, leading=9,
                                        textColor=GRAY, alignment=TA_CENTER),
            'cell': ParagraphStyle('Cell', parent=base, fontSize=8, leading=10),
        }

    # ------------------------------------------------------------------ pages

    def draw_cover(self, canvas, doc):
        canvas.saveState()
        canvas.setFillColor(PRIMARY)
        canvas.rect(0, PAGE_HEIGHT - COVER_BAND_HEIGHT, PAGE_WIDTH, COVER_BAND_HEIGHT, fill=1, stroke=0)
        canvas.setFillColor(colors.white)
        canvas.setFont(self.bold_font, 32)
        canvas.drawString(MARGIN, PAGE_HEIGHT - 40 * mm, self.options.brand.upper())
        canvas.setFont(self.font, 11)
        canvas.drawString(MARGIN, PAGE_HEIGHT - 50 * mm, 'Planificador Nutricional')

        right = PAGE_WIDTH - MARGIN
        if self.logo is not None:
            canvas.drawImage(self.logo, right - 30 * mm, PAGE_HEIGHT - 32 * mm, width=30 * mm,
                             height=20 * mm, preserveAspectRatio=True, anchor='ne', mask='auto')
        if self.nutritionist.get('name'):
            canvas.setFont(self.font, 9)
            canvas.drawRightString(right, PAGE_HEIGHT - 42 * mm, self.nutritionist['name'])
            if self.nutritionist.get('license_number'):
                canvas.drawRightString(right, PAGE_HEIGHT - 49 * mm, self.nutritionist['license_number'])
        canvas.restoreState()
        self.draw_footer(canvas)

    def draw_later_page(self, canvas, doc):
        canvas.saveState()
        canvas.setFillColor(PRIMARY)
        canvas.rect(0, PAGE_HEIGHT - HEADER_HEIGHT, PAGE_WIDTH, HEADER_HEIGHT, fill=1, stroke=0)
        canvas.setFillColor(colors.white)
        canvas.setFont(self.font, 8)
        baseline = PAGE_HEIGHT - 8 * mm
        canvas.drawString(MARGIN, baseline, f"{self.options.brand.upper()} · Reporte Nutricional")
        canvas.drawRightString(PAGE_WIDTH - MARGIN, baseline, f"Página {canvas.getPageNumber()}")
        canvas.restoreState()
        self.draw_footer(canvas)

    def draw_footer(self, canvas):
        canvas.saveState()
        canvas.setFont(self.font, 7)
        canvas.setFillColor(GRAY)
        stamp = self.generated_at.strftime('%d/%m/%Y %H:%M')
        brand = self.options.brand.capitalize()
        canvas.drawString(MARGIN, 6 * mm, f"Generado por {brand} · {stamp} · {self.options.user_email}")
        canvas.restoreState()

    # ---------------------------------------------------------------- helpers

    def paragraph(self, text, style='base'):
        return Paragraph(text, self.styles[style])

    def section_title(self, title):
        return [
            self.paragraph(escape(title), 'section_title'),
            HRFlowable(width='100%', thickness=0.5 * mm, color=PRIMARY, spaceBefore=1, spaceAfter=6),
        ]

    def dot_label(self, color, text, width, size=9):
        drawing = Drawing(width, size + 4)
        drawing.add(Circle(3, (size + 4) / 2, 2.5, fillColor=color, strokeColor=None))
        drawing.add(String(9, 3, text, fontName=self.font, fontSize=size, fillColor=GRAY))
        return drawing

    def table_style(self, extra=()):
        return TableStyle([
            ('BACKGROUND', (0, 0), (-1, 0), PRIMARY),
            ('TEXTCOLOR', (0, 0), (-1, 0), colors.white),
            ('FONTNAME', (0, 0), (-1, 0), self.bold_font),
            ('FONTNAME', (0, 1), (-1, -1), self.font),
            ('FONTSIZE', (0, 0), (-1, -1), 9),
            ('TEXTCOLOR', (0, 1), (-1, -1), DARK),
            ('ROWBACKGROUNDS', (0, 1), (-1, -1), [colors.white, LIGHT]),
            ('VALIGN', (0, 0), (-1, -1), 'MIDDLE'),
            ('TOPPADDING', (0, 0), (-1, -1), 3),
            ('BOTTOMPADDING', (0, 0), (-1, -1), 3),
            *extra,
        ])

    def status_table(self, keys, reference_header):
        rows = nutrient_status(self.week_totals, keys, self.reference)
        data = [['Nutriente', 'Total semana', reference_header, '% cubierto', 'Estado']]
        extra = []
        for idx, row in enumerate(rows, start=1):
            data.append([
                row['label'],
                f"{row['actual']:.1f} {row['unit']}",
                f"{row['reference']:g} {row['unit']}",
                f"{row['percentage']:.0f}%",
                row['semaphore'].label,
            ])
            extra.append(('TEXTCOLOR', (4, idx), (4, idx), HexColor(row['semaphore'].hex)))
            extra.append(('FONTNAME', (4, idx), (4, idx), self.bold_font))
        table = Table(data, colWidths=[40 * mm, 38 * mm, 38 * mm, 28 * mm, CONTENT_WIDTH - 144 * mm],
                      repeatRows=1, hAlign='LEFT')
        table.setStyle(self.table_style(extra))
        return table

    # --------------------------------------------------------------- sections

    def cover(self):
        opts = self.options
        story = [
            self.paragraph('Reporte Nutricional Semanal', 'cover_title'),
            self.paragraph(f"Paciente / Workspace: {escape(opts.workspace_name)}", 'cover_line'),
            self.paragraph(f"Email: {escape(opts.user_email or '')}", 'cover_line'),
            self.paragraph(f"Período: {format_date(opts.week_start)} al {format_date(opts.week_end)}",
                           'cover_line'),
        ]
        if self.nutritionist.get('name'):
            story.append(self.paragraph(f"Nutricionista: {escape(self.nutritionist['name'])}", 'cover_line'))
            if self.nutritionist.get('license_number'):
                story.append(self.paragraph(
                    f"Colegiatura: {escape(self.nutritionist['license_number'])}", 'cover_line'))
        story.append(Spacer(1, 10 * mm))

        cell_width = CONTENT_WIDTH / 2
        cells = []
        for row in nutrient_status(self.week_totals, MACRO_KEYS, self.reference):
            value = f"{row['actual']:,.0f} kcal" if row['key'] == 'kcal' else f"{row['actual']:.1f} g"
            cells.append([
                self.dot_label(HexColor(row['semaphore'].hex), row['label'], cell_width - 12),
                self.paragraph(f"<b>{value}</b>"),
                self.paragraph(f"{row['percentage']:.0f}% del objetivo semanal", 'small'),
            ])
        data = [
            [self.paragraph('<b>Resumen de la semana</b>'), ''],
            [cells[0], cells[1]],
            [cells[2], cells[3]],
        ]
        summary = Table(data, colWidths=[cell_width, cell_width], hAlign='LEFT')
        summary.setStyle(TableStyle([
            ('SPAN', (0, 0), (-1, 0)),
            ('BACKGROUND', (0, 0), (-1, -1), LIGHT),
            ('VALIGN', (0, 0), (-1, -1), 'TOP'),
            ('LEFTPADDING', (0, 0), (-1, -1), 8),
            ('TOPPADDING', (0, 0), (-1, -1), 6),
            ('BOTTOMPADDING', (0, 0), (-1, -1), 6),
        ]))
        story.append(summary)
        return story

    def executive_summary(self):
        story = self.section_title('Resumen Ejecutivo')

        card_width = (CONTENT_WIDTH - 9 * mm) / 4
        cards, accents = [], []
        for idx, row in enumerate(nutrient_status(self.week_totals, MACRO_KEYS, self.reference)):
            cards.append([
                self.paragraph(escape(row['label']), 'card_label'),
                self.paragraph(f"{round(row['actual']):,}", 'card_value'),
                self.paragraph(f"{row['unit']} · {row['percentage']:.0f}%", 'card_note'),
            ])
            accents.append(('LINEABOVE', (idx * 2, 0), (idx * 2, 0), 1 * mm, HexColor(row['semaphore'].hex)))
            accents.append(('BACKGROUND', (idx * 2, 0), (idx * 2, 0), LIGHT))
        # Gutter columns between the four cards
        data = [[cards[0], '', cards[1], '', cards[2], '', cards[3]]]
        gutter = 3 * mm
        card_table = Table(data, colWidths=[card_width, gutter] * 3 + [card_width], hAlign='LEFT')
        card_table.setStyle(TableStyle([
            ('VALIGN', (0, 0), (-1, -1), 'MIDDLE'),
            ('TOPPADDING', (0, 0), (-1, -1), 6),
            ('BOTTOMPADDING', (0, 0), (-1, -1), 6),
            *accents,
        ]))
        story.append(card_table)

        story.append(self.paragraph('Distribución de macronutrientes (% calorías)', 'heading'))
        distribution = macro_energy_distribution(self.week_totals)
        bar = Drawing(CONTENT_WIDTH, 8 * mm)
        bar.add(Rect(0, 0, CONTENT_WIDTH, 8 * mm, fillColor=LIGHT, strokeColor=None))
        x = 0
        for part in distribution:
            width = CONTENT_WIDTH * part['percentage'] / 100
            if width > 0:
                bar.add(Rect(x, 0, width, 8 * mm, fillColor=ENERGY_COLORS[part['key']], strokeColor=None))
                x += width
        story.append(bar)
        story.append(Spacer(1, 3 * mm))
        legend = [
            self.dot_label(ENERGY_COLORS[part['key']], f"{part['label']} {part['percentage']:.1f}%", 55 * mm, 8)
            for part in distribution
        ]
        story.append(Table([legend], colWidths=[55 * mm] * 3, hAlign='LEFT'))

        story.append(self.paragraph('Semáforo nutricional (vs. referencia semanal)', 'heading'))
        story.append(self.status_table(MACRO_KEYS, 'Referencia'))
        return story

    def daily_detail(self):
        story = self.section_title('Detalle Diario')
        data = [['Día', 'Plato', 'Kcal', 'Prot', 'Carbs', 'Grasas']]
        extra = [('ALIGN', (2, 1), (-1, -1), 'RIGHT'), ('FONTSIZE', (0, 1), (-1, -1), 8)]
        for idx, row in enumerate(daily_detail_rows(self.options.entries), start=1):
            if row.kind == 'dish':
                data.append([row.day, self.paragraph(escape(row.dish), 'cell'), *row.cells()])
            elif row.kind == 'subtotal':
                data.append([f"Subtotal {row.day}", '', *row.cells()])
                extra.append(('FONTNAME', (0, idx), (-1, idx), self.bold_font))
                extra.append(('SPAN', (0, idx), (1, idx)))
            else:
                data.append(['TOTAL SEMANAL', '', *row.cells()])
                extra.append(('SPAN', (0, idx), (1, idx)))
                extra.append(('FONTNAME', (0, idx), (-1, idx), self.bold_font))
                extra.append(('BACKGROUND', (0, idx), (-1, idx), PRIMARY))
                extra.append(('TEXTCOLOR', (0, idx), (-1, idx), colors.white))
        number_width = 18 * mm
        table = Table(data, colWidths=[24 * mm, CONTENT_WIDTH - 24 * mm - 4 * number_width]
                      + [number_width] * 4, repeatRows=1, hAlign='LEFT')
        table.setStyle(self.table_style(extra))
        story.append(table)
        return story

    def micronutrients(self):
        story = self.section_title('Micronutrientes')
        story.append(self.status_table(MICRO_KEYS, 'Ref. semanal'))
        story.append(self.paragraph('Leyenda:', 'heading'))
        for band, text in LEGEND:
            story.append(self.dot_label(HexColor(band.hex), text, CONTENT_WIDTH, 8))
            story.append(Spacer(1, 1.5 * mm))
        return story

    def protein_balance(self):
        story = self.section_title('Balance Proteico')
        story.append(self.paragraph('Distribución de proteínas por tipo', 'heading'))

        buckets = per_protein_type(self.options.entries)
        if not buckets:
            story.append(self.paragraph('No hay platos planificados esta semana.', 'small'))

        max_grams = max([bucket.grams for bucket in buckets] + [1])
        label_width, note_width = 40 * mm, 40 * mm
        bar_area = CONTENT_WIDTH - label_width - note_width
        rows = []
        for bucket in buckets:
            bar = Drawing(bar_area, 7 * mm)
            width = bucket.grams / max_grams * bar_area
            if width > 0:
                bar.add(Rect(0, 0, width, 7 * mm, rx=1, ry=1, fillColor=HexColor(bucket.color),
                             strokeColor=None))
            plural = '' if bucket.count == 1 else 's'
            rows.append([
                self.paragraph(escape(bucket.name or ''), 'cell'),
                bar,
                self.paragraph(f"{bucket.grams:.1f}g ({bucket.count} plato{plural})", 'small'),
            ])
        if rows:
            bars = Table(rows, colWidths=[label_width, bar_area, note_width], hAlign='LEFT')
            bars.setStyle(TableStyle([
                ('VALIGN', (0, 0), (-1, -1), 'MIDDLE'),
                ('LEFTPADDING', (0, 0), (-1, -1), 0),
                ('BOTTOMPADDING', (0, 0), (-1, -1), 4),
            ]))
            story.append(bars)

        story.append(Spacer(1, 5 * mm))
        data = [['Tipo de proteína', 'Gramos totales', '% del total proteico', 'N° de platos']]
        for bucket in buckets:
            data.append([bucket.name, f"{bucket.grams:.1f} g", f"{bucket.percentage:.1f}%", bucket.count])
        table = Table(data, colWidths=[CONTENT_WIDTH - 120 * mm, 35 * mm, 45 * mm, 40 * mm],
                      repeatRows=1, hAlign='LEFT')
        table.setStyle(self.table_style())
        story.append(table)
        return story

    def story(self):
        return [
            *self.cover(),
            NextPageTemplate('content'),
            PageBreak(),
            *self.executive_summary(),
            PageBreak(),
            *self.daily_detail(),
            PageBreak(),
            *self.micronutrients(),
            PageBreak(),
            *self.protein_balance(),
        ]


def generate_nutrition_report(options: ReportOptions) -> io.BytesIO:
    """
    Render the weekly report.

    Returns: PDF bytes (BytesIO positioned at 0)
    """
    logger.info(f"📄 Generating nutrition report for {options.workspace_name} "
                f"({options.week_start.isoformat()}, {len(options.entries)} entries)")
    builder = _ReportBuilder(options)

    pdf_bytes = io.BytesIO()
    doc = BaseDocTemplate(
        pdf_bytes,
        pagesize=A4,
        leftMargin=MARGIN,
        rightMargin=MARGIN,
        topMargin=HEADER_HEIGHT,
        bottomMargin=FOOTER_HEIGHT,
        title=f"Reporte Nutricional {options.workspace_name}",
        author=options.brand,
    )
    cover_frame = Frame(MARGIN, FOOTER_HEIGHT, CONTENT_WIDTH,
                        PAGE_HEIGHT - COVER_BAND_HEIGHT - 10 * mm - FOOTER_HEIGHT, id='cover')
    content_frame = Frame(MARGIN, FOOTER_HEIGHT, CONTENT_WIDTH,
                          PAGE_HEIGHT - HEADER_HEIGHT - 6 * mm - FOOTER_HEIGHT, id='content')
    doc.addPageTemplates([
        PageTemplate(id='cover', frames=[cover_frame], onPage=builder.draw_cover),
        PageTemplate(id='content', frames=[content_frame], onPage=builder.draw_later_page),
    ])

    doc.build(builder.story())
    pdf_bytes.seek(0)
    logger.info(f"✅ Nutrition report generated ({doc.page} pages)")
    return pdf_bytes
