import json
import logging
import sys
from typing import List, Optional, Protocol, TextIO

from metric_records import RECORD_MODELS, CollectionResult, EntityKind

logger = logging.getLogger(__name__)

BYTE_FIELDS = {"capacity", "freespace", "storage_committed", "storage_uncommitted"}
BYTE_UNITS = ("B", "KB", "MB", "GB", "TB", "PB")


class OutputSink(Protocol):
    def emit(self, result: CollectionResult) -> None: ...


def format_bytes(value: int) -> str:
    size = float(value)
    for unit in BYTE_UNITS:
        if abs(size) < 1024 or unit == BYTE_UNITS[-1]:
            break
        size /= 1024
    if unit == "B":
        return f"{int(size)}B"
    return f"{size:.1f}{unit}"


def format_cell(field_name: str, value) -> str:
    if value is None:
        return "N/A"
    if field_name in BYTE_FIELDS:
        return format_bytes(value)
    return str(value)


def align_rows(rows: List[List[str]], padding: int = 2) -> List[str]:
    """Pad each column to its widest cell; the last column is never padded."""
    if not rows:
        return []
    widths = [max(len(row[i]) for row in rows) for i in range(len(rows[0]))]
    lines = []
    for row in rows:
        cells = [cell.ljust(widths[i] + padding) for i, cell in enumerate(row[:-1])]
        lines.append("".join(cells) + row[-1])
    return lines


class TableSink:
    """Tab-aligned table per entity kind, one row per record."""

    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream or sys.stdout

    def _table(self, kind: EntityKind, records) -> List[str]:
        _, tags_model, measurements_model = RECORD_MODELS[kind]
        tag_fields = list(tags_model.model_fields)
        measurement_fields = list(measurements_model.model_fields)
        rows = [[f.upper() for f in tag_fields + measurement_fields]]
        for record in records:
            row = [format_cell(f, getattr(record.tags, f)) for f in tag_fields]
            row += [format_cell(f, getattr(record.measurements, f)) for f in measurement_fields]
            rows.append(row)
        return align_rows(rows)

    def emit(self, result: CollectionResult) -> None:
        print(f"Datacenter: {result.datacenter}", file=self.stream)
        for kind in EntityKind:
            if kind not in result.records:
                continue
            print(f"\n{kind.value}s ({len(result.records[kind])})", file=self.stream)
            for line in self._table(kind, result.records[kind]):
                print(line, file=self.stream)
        self.stream.flush()


class JsonSink:
    def __init__(self, path: Optional[str] = None, stream: Optional[TextIO] = None):
        self.path = path
        self.stream = stream or sys.stdout

    def emit(self, result: CollectionResult) -> None:
        data = result.to_dict()
        if self.path:
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False, default=str)
            logger.info(f"All collected data has been exported to: {self.path}")
            return
        json.dump(data, self.stream, indent=2, ensure_ascii=False, default=str)
        self.stream.write("\n")
        self.stream.flush()
