import datetime
import re

import pytest

from bocadi import pdf_report
from bocadi.aggregation import NUTRIENT_KEYS, Semaphore, nutrient_status, weekly_totals
from bocadi.pdf_report import (
    ReportOptions,
    daily_detail_rows,
    format_date,
    generate_nutrition_report,
    report_filename,
    sanitize_name,
)
from conftest import POLLO, ingredient, make_entry

MONDAY = datetime.date(2024, 3, 4)
SUNDAY = datetime.date(2024, 3, 10)


def _options(entries, **kwargs):
    return ReportOptions(
        entries=entries,
        week_start=MONDAY,
        week_end=SUNDAY,
        workspace_name=kwargs.pop("workspace_name", "Clínica Sur #2"),
        user_email=kwargs.pop("user_email", "ana@example.com"),
        generated_at=datetime.datetime(2024, 3, 11, 9, 30),
        **kwargs,
    )


def _page_count(data):
    return len(re.findall(rb"/Type\s*/Page[^s]", data))


class TestFilename:
    def test_deterministic_filename(self):
        assert report_filename("Clínica Sur #2", MONDAY, SUNDAY) == \
            "bocadi-reporte-cl-nica-sur--2-2024-03-04_2024-03-10.pdf"

    def test_brand_prefix(self):
        assert report_filename("Casa", MONDAY, SUNDAY, brand="nutri").startswith("nutri-reporte-casa-")

    def test_sanitize_keeps_only_ascii_alphanumerics(self):
        assert sanitize_name("Mi Casa_2") == "mi-casa-2"

    def test_sanitize_lowercases_before_filtering(self):
        # "\u0130".lower() is "i" followed by a combining dot above
        assert sanitize_name("\u0130stanbul") == "i-stanbul"
        assert sanitize_name(None) == ""


def test_format_date():
    assert format_date(MONDAY) == "04/03/2024"


class TestDailyDetail:
    def test_only_days_with_entries(self):
        entries = [
            make_entry("thursday", "Lentejas", [ingredient(kcal=450, protein_g=25, carbs_g=60, fat_g=8)]),
            make_entry("monday", "Pollo al horno", [ingredient(kcal=400, protein_g=40, fat_g=12)], POLLO),
            make_entry("monday", "Ensalada", [ingredient(kcal=50, carbs_g=8)]),
        ]
        rows = daily_detail_rows(entries)

        assert [row.kind for row in rows] == ["dish", "dish", "subtotal", "dish", "subtotal", "total"]
        assert [row.day for row in rows[:3]] == ["Lunes"] * 3
        assert rows[3].day == "Jueves"
        assert rows[3].dish == "Lentejas"
        assert rows[2].kcal == 450
        assert rows[-1].kcal == 900
        assert rows[-1].protein_g == 65

    def test_no_entries_only_total(self):
        rows = daily_detail_rows([])
        assert len(rows) == 1
        assert rows[0].kind == "total"
        assert rows[0].kcal == 0

    def test_cells_format(self):
        row = daily_detail_rows([make_entry("monday", "Arroz", [ingredient(kcal=130.4, protein_g=2.66)])])[0]
        assert row.cells() == [130, "2.7g", "0.0g", "0.0g"]


class TestGenerate:
    def test_renders_pdf(self, sample_entries):
        buffer = generate_nutrition_report(_options(sample_entries))
        data = buffer.getvalue()
        assert data.startswith(b"%PDF")
        assert buffer.tell() == 0
        assert _page_count(data) >= 5

    def test_zero_entries_still_renders(self):
        data = generate_nutrition_report(_options([])).getvalue()
        assert data.startswith(b"%PDF")
        assert _page_count(data) >= 5

    def test_zero_entries_are_all_critical(self):
        rows = nutrient_status(weekly_totals([]), NUTRIENT_KEYS)
        assert all(row["semaphore"] is Semaphore.CRITICAL for row in rows)

    def test_unreachable_logo_is_skipped(self, sample_entries, monkeypatch):
        def fail(*args, **kwargs):
            raise ConnectionError("offline")

        monkeypatch.setattr(pdf_report.requests, "get", fail)
        nutritionist = {"name": "Lic. Ana Pérez", "license_number": "CNP 1234",
                        "logo_url": "https://example.com/logo.png"}
        data = generate_nutrition_report(_options(sample_entries, nutritionist=nutritionist)).getvalue()
        assert data.startswith(b"%PDF")

    def test_markup_in_names_is_escaped(self):
        entries = [make_entry("monday", "Pan & <queso>", [ingredient(kcal=300)])]
        data = generate_nutrition_report(_options(entries, workspace_name="A & B <c>")).getvalue()
        assert data.startswith(b"%PDF")

    def test_unnamed_protein_type_still_renders(self):
        unnamed = {"id": "pt-x", "name": None, "color": "#123456"}
        entries = [make_entry("tuesday", "Guiso", [ingredient(kcal=400, protein_g=25)], protein_type=unnamed)]
        data = generate_nutrition_report(_options(entries)).getvalue()
        assert data.startswith(b"%PDF")

    def test_rendering_error_propagates(self, sample_entries, monkeypatch):
        def broken(self):
            raise RuntimeError("layout failed")

        monkeypatch.setattr(pdf_report._ReportBuilder, "protein_balance", broken)
        with pytest.raises(RuntimeError):
            generate_nutrition_report(_options(sample_entries))
