"""
Tests for the CSV/JSON report writers and the console table.
"""

import csv
import json
from dataclasses import dataclass

from pydantic import BaseModel

from winadmin.core.reports import format_table, report_path, write_csv_report, write_json_report


@dataclass
class Row:
    name: str
    size: int


class Item(BaseModel):
    domain: str
    records: list


def test_report_path_is_timestamped(tmp_path):
    path = report_path("folder_sizes", "csv", str(tmp_path / "reports"))
    assert path.startswith(str(tmp_path / "reports"))
    assert path.endswith(".csv")
    assert "folder_sizes_" in path


def test_report_path_explicit(tmp_path):
    target = tmp_path / "out" / "sizes.csv"
    assert report_path("x", "csv", "unused", str(target)) == str(target)
    assert target.parent.is_dir()


def test_write_csv_report(tmp_path):
    out = write_csv_report(
        [Row("a", 1), Row("b", 2)], "sizes", str(tmp_path), path=str(tmp_path / "sizes.csv"),
    )
    with open(out, newline="", encoding="utf-8") as f:
        rows = list(csv.DictReader(f))
    assert rows == [{"name": "a", "size": "1"}, {"name": "b", "size": "2"}]


def test_write_csv_report_encodes_lists_and_limits_columns(tmp_path):
    out = write_csv_report(
        [Item(domain="example.com", records=["10 mail.example.com"])],
        "mail", str(tmp_path), columns=["domain", "records"],
    )
    with open(out, newline="", encoding="utf-8") as f:
        row = next(csv.DictReader(f))
    assert json.loads(row["records"]) == ["10 mail.example.com"]


def test_write_json_report(tmp_path):
    out = write_json_report([Item(domain="example.com", records=[]), {"domain": "b.com"}], "zones", str(tmp_path))
    with open(out, encoding="utf-8") as f:
        data = json.load(f)
    assert data == [{"domain": "example.com", "records": []}, {"domain": "b.com"}]


def test_format_table():
    table = format_table([["chrome", 2, None], ["msedge", 10, "killed"]], ["Browser", "Count", "Status"])
    assert table.splitlines() == [
        "Browser  Count  Status",
        "-------  -----  ------",
        "chrome   2",
        "msedge   10     killed",
    ]
