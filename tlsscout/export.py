# tlsscout/export.py

import threading
from operator import attrgetter
from typing import Iterable, List

import pandas as pd
from openpyxl.utils import get_column_letter

from tlsscout.models import ScanResult

CSV_HEADER = "IP,ORIGIN,CERT_DOMAIN,CERT_ISSUER,GEO_CODE"

EXCEL_SHEET = "Scan Results"
EXCEL_COLUMNS = {
    "IP": 15,
    "Origin": 20,
    "Domain": 30,
    "Issuer": 40,
    "Geo": 8,
    "TLS Version": 12,
    "ALPN": 10,
    "Feasible": 10,
}

SORT_COLUMNS = ("ip", "origin", "cert_domain", "cert_issuer", "geo_code", "feasible")


class CsvResultWriter:
    """Append feasible results to a CSV file as they arrive, from any worker thread."""

    def __init__(self, path: str):
        self.path = path
        self.lock = threading.Lock()
        self.count = 0
        self.file = open(path, "w", encoding="utf-8", newline="")
        self.file.write(CSV_HEADER + "\n")
        self.file.flush()

    def write(self, result: ScanResult):
        if not result.feasible:
            return
        with self.lock:
            self.file.write(result.csv_row() + "\n")
            self.file.flush()
            self.count += 1

    def close(self):
        with self.lock:
            self.file.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


def write_csv(results: Iterable[ScanResult], path: str) -> int:
    """Write feasible results in the flat CSV format; returns the number of rows written."""
    with CsvResultWriter(path) as writer:
        for result in results:
            writer.write(result)
        return writer.count


def results_frame(results: Iterable[ScanResult], feasible_only: bool = True) -> pd.DataFrame:
    """Tabular view of results with the spreadsheet column names."""
    rows = [
        {
            "IP": r.ip,
            "Origin": r.origin,
            "Domain": r.cert_domain,
            "Issuer": r.cert_issuer,
            "Geo": r.geo_code,
            "TLS Version": r.tls_version,
            "ALPN": r.alpn,
            "Feasible": "Yes" if r.feasible else "No",
        }
        for r in results
        if r.feasible or not feasible_only
    ]
    return pd.DataFrame(rows, columns=list(EXCEL_COLUMNS))


def save_excel(results: Iterable[ScanResult], path: str) -> int:
    """Write feasible results to an .xlsx workbook with an auto-filter; returns the row count."""
    df = results_frame(results)
    with pd.ExcelWriter(path, engine="openpyxl") as writer:
        df.to_excel(writer, sheet_name=EXCEL_SHEET, index=False)
        worksheet = writer.sheets[EXCEL_SHEET]
        for index, width in enumerate(EXCEL_COLUMNS.values()):
            worksheet.column_dimensions[get_column_letter(index + 1)].width = width
        if len(df):
            worksheet.auto_filter.ref = worksheet.dimensions
    return len(df)


def sort_results(results: Iterable[ScanResult], column: str, ascending: bool = True) -> List[ScanResult]:
    """Stable sort by one result field."""
    if column not in SORT_COLUMNS:
        raise ValueError(f"Cannot sort by {column!r}")
    return sorted(results, key=attrgetter(column), reverse=not ascending)
