"""
Report helpers shared by the command-line scripts.

Reports are written as CSV (for spreadsheets) or JSON (for anything that
needs nested data) into a timestamped file under the report directory.
"""

import csv
import json
import logging
import os
from dataclasses import asdict, is_dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from pydantic import BaseModel

logger = logging.getLogger(__name__)


def to_dict(item: Any) -> Dict[str, Any]:
    """Convert a pydantic model, dataclass or mapping into a plain dict."""
    if isinstance(item, BaseModel):
        return item.model_dump()
    if is_dataclass(item):
        return asdict(item)
    return dict(item)


def report_path(prefix: str, extension: str, report_dir: str, path: Optional[str] = None) -> str:
    if path:
        parent = os.path.dirname(path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        return path
    os.makedirs(report_dir, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return os.path.join(report_dir, f"{prefix}_{timestamp}.{extension}")


def write_csv_report(
    rows: Iterable[Any],
    prefix: str,
    report_dir: str,
    path: Optional[str] = None,
    columns: Optional[Sequence[str]] = None,
) -> str:
    """Write rows to CSV. Nested values (lists, dicts) are JSON encoded."""
    dict_rows = [to_dict(r) for r in rows]
    if columns is None:
        columns = list(dict_rows[0].keys()) if dict_rows else []

    out_path = report_path(prefix, "csv", report_dir, path)
    with open(out_path, "w", newline="", encoding="utf-8") as handle:
        writer = csv.DictWriter(handle, fieldnames=list(columns), extrasaction="ignore")
        writer.writeheader()
        for row in dict_rows:
            writer.writerow({
                k: json.dumps(v, default=str) if isinstance(v, (list, dict)) else v
                for k, v in row.items()
            })

    logger.info("CSV report written to %s (%d rows)", out_path, len(dict_rows))
    return out_path


def write_json_report(items: Iterable[Any], prefix: str, report_dir: str, path: Optional[str] = None) -> str:
    out_path = report_path(prefix, "json", report_dir, path)
    with open(out_path, "w", encoding="utf-8") as handle:
        json.dump([to_dict(i) for i in items], handle, indent=2, default=str)
    logger.info("JSON report written to %s", out_path)
    return out_path


def format_table(rows: List[Sequence[Any]], headers: Sequence[str]) -> str:
    """Render rows as a fixed-width text table."""
    cells = [[str(h) for h in headers]] + [["" if c is None else str(c) for c in r] for r in rows]
    widths = [max(len(row[i]) for row in cells) for i in range(len(headers))]

    lines = ["  ".join(c.ljust(w) for c, w in zip(cells[0], widths)).rstrip()]
    lines.append("  ".join("-" * w for w in widths))
    for row in cells[1:]:
        lines.append("  ".join(c.ljust(w) for c, w in zip(row, widths)).rstrip())
    return "\n".join(lines)
