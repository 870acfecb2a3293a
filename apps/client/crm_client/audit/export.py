from __future__ import annotations

import csv
import io
from collections.abc import Iterable
from datetime import date, datetime, timezone

from crm_client.audit.schemas import AuditRecord


EXPORT_FIELDNAMES = ["Date", "Action", "Entity Type", "Entity ID", "Description"]


def export_csv(records: Iterable[AuditRecord]) -> str:
    output = io.StringIO()
    writer = csv.DictWriter(output, fieldnames=EXPORT_FIELDNAMES)
    writer.writeheader()
    for record in records:
        writer.writerow(
            {
                "Date": record.created_at.isoformat(),
                "Action": record.action,
                "Entity Type": record.entity_type,
                "Entity ID": record.entity_id,
                "Description": record.description or "",
            }
        )
    return output.getvalue()


def export_filename(day: date | None = None) -> str:
    resolved = day or datetime.now(timezone.utc).date()
    return f"audit-trail-{resolved.isoformat()}.csv"
