from __future__ import annotations

import logging
import re
from datetime import date, datetime
from pathlib import Path

import openpyxl
from sqlalchemy import select
from sqlalchemy.orm import Session

from cofound.errors import NotFoundError
from cofound.models import MRRData, Project
from cofound.schemas import MRRImportResult

log = logging.getLogger(__name__)

_MONTH_RE = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])")


def _s(value: object) -> str:
    """Safely coerce cell value to stripped string."""
    if value is None:
        return ""
    return str(value).strip()


def _col(row: tuple, idx: int) -> object:
    """Safely get a column value from a row tuple."""
    return row[idx] if idx < len(row) else None


def _i(value: object) -> int | None:
    """Coerce a revenue cell to whole dollars, None if unreadable."""
    if value is None or _s(value) == "":
        return None
    try:
        return int(round(float(str(value).replace(",", "").replace("$", ""))))
    except (ValueError, TypeError):
        return None


def _month(value: object) -> str:
    """Normalize a month cell (date, datetime or ``YYYY-MM`` text) to ``YYYY-MM``."""
    if isinstance(value, (datetime, date)):
        return f"{value.year}-{value.month:02d}"
    m = _MONTH_RE.match(_s(value))
    return f"{m.group(1)}-{m.group(2)}" if m else ""


def _header_index(header: tuple) -> dict[str, int]:
    names = [_s(h).casefold() for h in header]
    idx = {"month": 0, "revenue": 1}
    for key in idx:
        if key in names:
            idx[key] = names.index(key)
    return idx


def import_mrr_xlsx(file_path: str | Path, session: Session, project_id: str) -> MRRImportResult:
    """Import monthly revenue rows from the first sheet. Upserts by (project, month)."""
    project = session.execute(select(Project).where(Project.id == project_id)).scalars().first()
    if project is None:
        raise NotFoundError("Project", project_id)

    file_path = Path(file_path)
    wb = openpyxl.load_workbook(file_path, read_only=True, data_only=True)
    ws = wb[wb.sheetnames[0]]
    rows = list(ws.iter_rows(values_only=True))
    wb.close()

    if not rows:
        return MRRImportResult(total_rows=0, created=0, updated=0, skipped=0)
    cols = _header_index(rows[0])

    existing: dict[str, MRRData] = {
        r.month: r for r in session.execute(
            select(MRRData).where(MRRData.project_id == project_id)
        ).scalars().all()
    }

    created = updated = skipped = 0
    data_rows = [r for r in rows[1:] if r and any(c is not None for c in r)]
    for row in data_rows:
        month = _month(_col(row, cols["month"]))
        revenue = _i(_col(row, cols["revenue"]))
        if not month or revenue is None or revenue < 0:
            skipped += 1
            continue
        if month in existing:
            existing[month].revenue = revenue
            updated += 1
        else:
            existing[month] = MRRData(project_id=project_id, month=month, revenue=revenue)
            session.add(existing[month])
            created += 1

    session.commit()
    log.info(
        "Imported MRR for %s from %s: %d created, %d updated, %d skipped",
        project_id, file_path.name, created, updated, skipped,
    )
    return MRRImportResult(
        total_rows=len(data_rows), created=created, updated=updated, skipped=skipped,
    )
