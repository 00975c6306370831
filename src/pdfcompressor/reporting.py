"""Batch run reports and size formatting for pdfcompressor."""

from __future__ import annotations

from datetime import datetime, timezone
import getpass
import json
from pathlib import Path
import platform
import sys

import PIL
import pypdf

from pdfcompressor.models import (
    BatchResult,
    CompressionOptions,
    CompressionResult,
    FileFailure,
    FileRecord,
    JSONValue,
)

SIZE_UNITS = ("Bytes", "KB", "MB", "GB", "TB")


def format_bytes(size: int) -> str:
    """Format a byte count as ``"1.5 KB"`` style text."""
    if size == 0:
        return "0 Bytes"
    sign = "-" if size < 0 else ""
    value = float(abs(size))
    unit_index = 0
    while value >= 1024 and unit_index < len(SIZE_UNITS) - 1:
        value /= 1024
        unit_index += 1
    text = f"{value:.2f}".rstrip("0").rstrip(".")
    return f"{sign}{text} {SIZE_UNITS[unit_index]}"


def record_to_dict(record: FileRecord) -> dict[str, JSONValue]:
    """Convert one per-file batch record to a JSON-serializable dictionary."""
    if isinstance(record, FileFailure):
        return {
            "status": "failed",
            "input_path": record.input_path,
            "output_path": record.output_path,
            "error": record.error_message,
        }
    return {
        "status": "compressed",
        "input_path": record.input_path,
        "output_path": record.output_path,
        "input_size_bytes": record.input_size_bytes,
        "output_size_bytes": record.output_size_bytes,
        "savings_bytes": record.savings_bytes,
        "percent_reduction": record.percent_reduction,
        "stage_warnings": list(record.stage_warnings),
        "capability_gaps": list(record.capability_gaps),
    }


def batch_result_to_dict(
    result: BatchResult,
    options: CompressionOptions,
    input_dir: Path,
    output_dir: Path,
) -> dict[str, JSONValue]:
    """Build the JSON report payload for a batch run, including environment metadata."""
    now_utc = datetime.now(timezone.utc)
    return {
        "timestamp_local": now_utc.astimezone().isoformat(),
        "timestamp_utc": now_utc.isoformat(),
        "user": getpass.getuser(),
        "host": platform.node(),
        "python_version": sys.version.split()[0],
        "pypdf_version": pypdf.__version__,
        "pillow_version": PIL.__version__,
        "input_dir": str(input_dir),
        "output_dir": str(output_dir),
        "options": options.to_dict(),
        "cancelled": result.cancelled,
        "totals": {
            "files_found": result.files_found,
            "files_processed": result.files_processed,
            "files_succeeded": result.files_succeeded,
            "files_failed": result.files_failed,
            "total_input_size_bytes": result.total_input_size_bytes,
            "total_output_size_bytes": result.total_output_size_bytes,
            "total_savings_bytes": result.total_savings_bytes,
            "percent_reduction": result.percent_reduction,
        },
        "files": [record_to_dict(record) for record in result.files],
    }


def write_batch_reports(
    result: BatchResult,
    options: CompressionOptions,
    input_dir: Path,
    output_dir: Path,
    report_dir: Path,
) -> tuple[Path, Path]:
    """Write machine-readable and text reports for a batch run."""
    payload = batch_result_to_dict(result, options, input_dir, output_dir)
    report_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.fromisoformat(str(payload["timestamp_local"])).strftime("%Y%m%d_%H%M%S")
    json_path = _unique_path(report_dir, f"compression_report_{timestamp}", ".json")
    txt_path = json_path.with_suffix(".txt")

    json_path.write_text(json.dumps(payload, indent=2, sort_keys=True) + "\n", encoding="utf-8")
    txt_path.write_text(_text_report(payload, result), encoding="utf-8")
    return json_path, txt_path


def _unique_path(directory: Path, stem: str, suffix: str) -> Path:
    candidate = directory / f"{stem}{suffix}"
    counter = 1
    while candidate.exists():
        candidate = directory / f"{stem}_{counter}{suffix}"
        counter += 1
    return candidate


def _text_report(payload: dict[str, JSONValue], result: BatchResult) -> str:
    lines = [
        "pdfcompressor Run Report",
        "",
        f"Timestamp (local): {payload['timestamp_local']}",
        f"Timestamp (UTC):   {payload['timestamp_utc']}",
        f"User:              {payload['user']}",
        f"Host:              {payload['host']}",
        f"Python:            {payload['python_version']}",
        f"pypdf:             {payload['pypdf_version']}",
        f"Pillow:            {payload['pillow_version']}",
        "",
        f"Input:  {payload['input_dir']}",
        f"Output: {payload['output_dir']}",
        "",
        "Options:",
    ]
    options = payload["options"]
    if isinstance(options, dict):
        lines.extend(f"  {key}={value}" for key, value in options.items())

    lines.extend(
        [
            "",
            "Totals:",
            f"  files_found={result.files_found}",
            f"  files_processed={result.files_processed}",
            f"  files_succeeded={result.files_succeeded}",
            f"  files_failed={result.files_failed}",
            f"  total_input={format_bytes(result.total_input_size_bytes)}",
            f"  total_output={format_bytes(result.total_output_size_bytes)}",
            f"  total_savings={format_bytes(result.total_savings_bytes)} ({result.percent_reduction})",
        ]
    )
    if result.cancelled:
        lines.append("  cancelled=True")

    lines.extend(["", "Files:", _file_table(result.files)])

    for record in result.files:
        if isinstance(record, CompressionResult) and (record.stage_warnings or record.capability_gaps):
            lines.extend(["", f"[compressed] {record.input_path}"])
            lines.extend(f"  warning: {warning}" for warning in record.stage_warnings)
            lines.extend(f"  unsupported: {gap}" for gap in record.capability_gaps)
        elif isinstance(record, FileFailure):
            lines.extend(["", f"[failed] {record.input_path}", f"  error: {record.error_message}"])

    return "\n".join(lines) + "\n"


def _file_table(files: list[FileRecord]) -> str:
    if not files:
        return "status       input_bytes  output_bytes  reduction  input\n(no PDF files found)"

    header = f"{'status':<12} {'input_bytes':>11} {'output_bytes':>12} {'reduction':>10}  input"
    rows = []
    for record in files:
        if isinstance(record, FileFailure):
            rows.append(f"{'failed':<12} {'-':>11} {'-':>12} {'-':>10}  {record.input_path}")
        else:
            rows.append(
                f"{'compressed':<12} {record.input_size_bytes:>11} {record.output_size_bytes:>12} "
                f"{record.percent_reduction:>10}  {record.input_path}"
            )
    return "\n".join([header, *rows])
