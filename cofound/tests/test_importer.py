from __future__ import annotations

from datetime import datetime

import openpyxl
import pytest

from cofound import services
from cofound.errors import NotFoundError
from cofound.importer import import_mrr_xlsx
from cofound.models import MRRData


def _write_sheet(path, rows):
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = "MRR"
    for row in rows:
        ws.append(row)
    wb.save(path)
    return path


class TestImportMRR:
    def test_creates_and_updates_by_month(self, tmp_path, session, project):
        session.add(MRRData(project_id=project.id, month="2026-01", revenue=500))
        session.commit()
        path = _write_sheet(tmp_path / "mrr.xlsx", [
            ("Month", "Revenue"),
            ("2026-01", 1000),
            (datetime(2026, 2, 1), "1,500"),
            ("2026-03", 2100.6),
        ])

        result = import_mrr_xlsx(path, session, project.id)

        assert (result.total_rows, result.created, result.updated, result.skipped) == (3, 2, 1, 0)
        rows = services.mrr_by_project(session, project.id)
        assert [(r.month, r.revenue) for r in rows] == [
            ("2026-01", 1000), ("2026-02", 1500), ("2026-03", 2101),
        ]

    def test_header_order_is_respected(self, tmp_path, session, project):
        path = _write_sheet(tmp_path / "swapped.xlsx", [
            ("revenue", "month"),
            (800, "2025-12"),
        ])
        result = import_mrr_xlsx(path, session, project.id)
        assert result.created == 1
        assert services.mrr_by_project(session, project.id)[0].month == "2025-12"

    def test_bad_rows_skipped(self, tmp_path, session, project):
        path = _write_sheet(tmp_path / "bad.xlsx", [
            ("month", "revenue"),
            ("January", 100),
            ("2026-13", 100),
            ("2026-04", "n/a"),
            ("2026-05", -5),
            (None, None),
            ("2026-06", 300),
        ])
        result = import_mrr_xlsx(path, session, project.id)
        assert result.total_rows == 5
        assert result.created == 1
        assert result.skipped == 4

    def test_unknown_project(self, tmp_path, session):
        path = _write_sheet(tmp_path / "mrr.xlsx", [("month", "revenue"), ("2026-01", 1)])
        with pytest.raises(NotFoundError):
            import_mrr_xlsx(path, session, "missing")
