"""Command-line interface for pdfcompressor."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Sequence

from pdfcompressor.batch import BatchProcessor
from pdfcompressor.compressor import PDFCompressor
from pdfcompressor.models import (
    COMPRESSION_LEVEL_RANGE,
    IMAGE_QUALITY_RANGE,
    BatchResult,
    CompressionOptions,
    CompressionResult,
    ProgressEvent,
)
from pdfcompressor.reporting import format_bytes, write_batch_reports
from pdfcompressor.stages import GRAYSCALE_GAP

OUTPUT_SUFFIX = "-compressed"


def build_parser() -> argparse.ArgumentParser:
    """Create the command-line parser."""
    parser = argparse.ArgumentParser(
        prog="pdfcompressor",
        description="Compress PDF files using multiple techniques.",
    )
    parser.add_argument("input", help="Input PDF file or directory.")
    parser.add_argument(
        "output",
        nargs="?",
        default=None,
        help=(
            "Output PDF file or directory. Defaults to '<input>-compressed.pdf' for files "
            "and to the input directory for directories."
        ),
    )
    parser.add_argument(
        "--optimize-images",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Recompress embedded images. Enabled by default.",
    )
    parser.add_argument(
        "--image-quality",
        type=_parse_image_quality,
        default=80,
        help="Quality of recompressed images (1-100). Default: 80.",
    )
    parser.add_argument(
        "--remove-metadata",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Strip document metadata. Enabled by default.",
    )
    parser.add_argument(
        "--compression-level",
        type=_parse_compression_level,
        default=3,
        help="PDF compression level (1-5). Default: 3.",
    )
    parser.add_argument(
        "--grayscale",
        action="store_true",
        help="Request grayscale conversion (reported as unsupported by the pypdf codec).",
    )
    parser.add_argument(
        "--recursive",
        action="store_true",
        help="Process subdirectories recursively when the input is a directory.",
    )
    parser.add_argument(
        "--workers",
        type=_parse_workers,
        default=1,
        help="Number of files compressed in parallel for directory input. Default: 1.",
    )
    parser.add_argument(
        "--report-dir",
        default=None,
        help="Write JSON and text batch reports to this directory (directory input only).",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log per-stage details and pypdf warnings.",
    )
    return parser


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Run the CLI and return the process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(verbose=bool(args.verbose))
    _configure_pypdf_logging(capture_warnings=bool(args.verbose))

    options = CompressionOptions(
        optimize_images=bool(args.optimize_images),
        image_quality=int(args.image_quality),
        remove_metadata=bool(args.remove_metadata),
        compression_level=int(args.compression_level),
        grayscale=bool(args.grayscale),
    )
    input_path = Path(args.input)

    try:
        if input_path.is_file():
            _compress_file(input_path, args.output, options)
        elif input_path.is_dir():
            _compress_directory(
                input_dir=input_path,
                output=args.output,
                options=options,
                recursive=bool(args.recursive),
                workers=int(args.workers),
                report_dir=Path(args.report_dir) if args.report_dir is not None else None,
            )
        elif input_path.exists():
            raise ValueError(f"Input is neither a file nor a directory: {input_path}")
        else:
            raise FileNotFoundError(f"Input path does not exist: {input_path}")
    except Exception as exc:
        print(f"pdfcompressor: error: {exc}")
        return 1
    return 0


def main(argv: Sequence[str] | None = None) -> None:
    """Run the CLI as a console entry point."""
    raise SystemExit(run_cli(argv))


def default_output_path(input_path: Path) -> Path:
    """Return ``<stem>-compressed<ext>`` beside the input file."""
    return input_path.with_name(f"{input_path.stem}{OUTPUT_SUFFIX}{input_path.suffix}")


def _compress_file(input_path: Path, output: str | None, options: CompressionOptions) -> None:
    output_path = Path(output) if output is not None else default_output_path(input_path)
    print(f"Compressing {input_path} to {output_path}...")

    result = PDFCompressor(options).compress(input_path, output_path)

    print("Compression complete!")
    print(f"Original size: {format_bytes(result.input_size_bytes)}")
    print(f"Compressed size: {format_bytes(result.output_size_bytes)}")
    print(f"Savings: {format_bytes(result.savings_bytes)} ({result.percent_reduction})")
    _print_result_notes(result)


def _compress_directory(
    input_dir: Path,
    output: str | None,
    options: CompressionOptions,
    recursive: bool,
    workers: int,
    report_dir: Path | None,
) -> None:
    output_dir = Path(output) if output is not None else input_dir
    processor = BatchProcessor(options, workers=workers)

    result = processor.process_directory(
        input_dir,
        output_dir,
        recursive=recursive,
        progress_callback=_print_progress,
        output_suffix=OUTPUT_SUFFIX,
    )

    if result.files_found == 0:
        print("No PDF files found in the specified directory.")
    else:
        _print_batch_summary(result)

    if report_dir is not None:
        json_path, txt_path = write_batch_reports(
            result=result,
            options=options,
            input_dir=input_dir,
            output_dir=output_dir,
            report_dir=report_dir,
        )
        print(f"pdfcompressor: reports written to {json_path} and {txt_path}")


def _print_progress(event: ProgressEvent) -> None:
    print(f"[{event.current_index + 1}/{event.total_files}] Compressing {event.current_file}...")


def _print_batch_summary(result: BatchResult) -> None:
    for record in result.files:
        if isinstance(record, CompressionResult):
            print(
                f"  {record.input_path}: "
                f"Original: {format_bytes(record.input_size_bytes)}, "
                f"Compressed: {format_bytes(record.output_size_bytes)}, "
                f"Savings: {record.percent_reduction}"
            )
            _print_result_notes(record)
        else:
            print(f"  Error compressing {record.input_path}: {record.error_message}")

    print("")
    print("Compression complete!")
    print(f"Files: {result.files_succeeded} succeeded, {result.files_failed} failed")
    print(f"Total original size: {format_bytes(result.total_input_size_bytes)}")
    print(f"Total compressed size: {format_bytes(result.total_output_size_bytes)}")
    print(
        f"Total savings: {format_bytes(result.total_savings_bytes)} "
        f"({result.percent_reduction})"
    )


def _print_result_notes(result: CompressionResult) -> None:
    for warning in result.stage_warnings:
        print(f"pdfcompressor: warning: stage fell back to its input: {warning}")
    if GRAYSCALE_GAP in result.capability_gaps:
        print("pdfcompressor: warning: grayscale conversion is not supported; colours were left unchanged.")


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("pdfcompressor").setLevel(logging.INFO if verbose else logging.WARNING)


def _configure_pypdf_logging(capture_warnings: bool) -> None:
    """Suppress pypdf warning spam unless verbose output is requested."""
    logger = logging.getLogger("pypdf")
    logger.setLevel(logging.WARNING if capture_warnings else logging.ERROR)
    logger.propagate = capture_warnings
    if not any(isinstance(handler, logging.NullHandler) for handler in logger.handlers):
        logger.addHandler(logging.NullHandler())


def _parse_image_quality(value: str) -> int:
    return _parse_bounded_int(value, "image quality", IMAGE_QUALITY_RANGE)


def _parse_compression_level(value: str) -> int:
    return _parse_bounded_int(value, "compression level", COMPRESSION_LEVEL_RANGE)


def _parse_workers(value: str) -> int:
    return _parse_bounded_int(value, "workers", (1, 64))


def _parse_bounded_int(value: str, label: str, bounds: tuple[int, int]) -> int:
    """Parse an integer CLI value within inclusive bounds."""
    low, high = bounds
    try:
        number = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"{label} must be an integer") from exc
    if not low <= number <= high:
        raise argparse.ArgumentTypeError(f"{label} must be between {low} and {high}")
    return number
