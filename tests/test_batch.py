"""Tests for directory discovery and batch compression."""

from __future__ import annotations

from pathlib import Path
import threading

import pytest

from pdfcompressor.batch import BatchProcessor, destination_path, discover_pdfs
from pdfcompressor.compressor import PDFCompressor
from pdfcompressor.models import CompressionOptions, CompressionResult, FileFailure, ProgressEvent
from tests.pdf_factory import text_page, write_bytes_file, write_pdf_with_pages


@pytest.fixture
def flaky_compress(monkeypatch: pytest.MonkeyPatch):
    """Make the pipeline raise a fatal error for any file named ``b.pdf``."""
    original = PDFCompressor.compress

    def compress(self, input_path, output_path, **overrides):
        if Path(input_path).name == "b.pdf":
            raise OSError("simulated write failure")
        return original(self, input_path, output_path, **overrides)

    monkeypatch.setattr(PDFCompressor, "compress", compress)


def _names(paths: list[Path], root: Path) -> set[str]:
    return {path.relative_to(root).as_posix() for path in paths}


def test_discover_pdfs_respects_recursive_flag(tmp_path: Path) -> None:
    write_bytes_file(tmp_path / "a.pdf", size=10)
    write_bytes_file(tmp_path / "sub" / "b.pdf", size=10)
    write_bytes_file(tmp_path / "notes.txt", size=10)

    assert _names(discover_pdfs(tmp_path, recursive=True), tmp_path) == {"a.pdf", "sub/b.pdf"}
    assert _names(discover_pdfs(tmp_path, recursive=False), tmp_path) == {"a.pdf"}


def test_discover_pdfs_matches_extension_case_insensitively(tmp_path: Path) -> None:
    write_bytes_file(tmp_path / "UPPER.PDF", size=10)
    write_bytes_file(tmp_path / "mixed.Pdf", size=10)
    write_bytes_file(tmp_path / "pdf", size=10)
    (tmp_path / "folder.pdf").mkdir()

    assert _names(discover_pdfs(tmp_path), tmp_path) == {"UPPER.PDF", "mixed.Pdf"}


def test_discover_pdfs_handles_deep_trees(tmp_path: Path) -> None:
    directory = tmp_path
    for depth in range(60):
        directory = directory / f"level{depth}"
    write_bytes_file(directory / "deep.pdf", size=10)

    found = discover_pdfs(tmp_path, recursive=True)

    assert [path.name for path in found] == ["deep.pdf"]


def test_discover_pdfs_visits_subdirectories_depth_first(tmp_path: Path) -> None:
    write_bytes_file(tmp_path / "one" / "deeper" / "x.pdf", size=10)
    write_bytes_file(tmp_path / "one" / "y.pdf", size=10)
    write_bytes_file(tmp_path / "two" / "z.pdf", size=10)

    found = _names(discover_pdfs(tmp_path, recursive=True), tmp_path)

    assert found == {"one/deeper/x.pdf", "one/y.pdf", "two/z.pdf"}


def test_discover_pdfs_skips_suffix_and_excluded_dir(tmp_path: Path) -> None:
    write_bytes_file(tmp_path / "report.pdf", size=10)
    write_bytes_file(tmp_path / "report-compressed.pdf", size=10)
    write_bytes_file(tmp_path / "out" / "old.pdf", size=10)

    found = discover_pdfs(
        tmp_path,
        recursive=True,
        exclude_dir=tmp_path / "out",
        skip_suffix="-compressed",
    )

    assert _names(found, tmp_path) == {"report.pdf"}


def test_destination_path_mirrors_tree_and_adds_suffix(tmp_path: Path) -> None:
    input_dir = tmp_path / "in"
    output_dir = tmp_path / "out"
    source = input_dir / "sub" / "doc.pdf"

    assert destination_path(source, input_dir, output_dir) == output_dir / "sub" / "doc.pdf"
    assert (
        destination_path(source, input_dir, output_dir, "-compressed")
        == output_dir / "sub" / "doc-compressed.pdf"
    )


def test_process_directory_missing_input_raises(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError, match="does not exist"):
        BatchProcessor().process_directory(tmp_path / "missing", tmp_path / "out")


def test_process_directory_file_input_raises(tmp_path: Path) -> None:
    source = write_bytes_file(tmp_path / "a.pdf", size=10)

    with pytest.raises(NotADirectoryError):
        BatchProcessor().process_directory(source, tmp_path / "out")


def test_process_directory_with_no_pdfs_returns_empty_result(tmp_path: Path) -> None:
    input_dir = tmp_path / "in"
    input_dir.mkdir()
    write_bytes_file(input_dir / "readme.txt", size=10)

    result = BatchProcessor().process_directory(input_dir, tmp_path / "out")

    assert result.files_processed == 0
    assert result.files_found == 0
    assert result.percent_reduction == "0.00%"
    assert (tmp_path / "out").is_dir()


def test_batch_isolates_failures_and_totals_successes(tmp_path: Path, flaky_compress) -> None:
    input_dir = tmp_path / "in"
    output_dir = tmp_path / "out"
    write_bytes_file(input_dir / "a.pdf", size=100)
    write_bytes_file(input_dir / "b.pdf", size=200)
    write_bytes_file(input_dir / "c.pdf", size=300)

    result = BatchProcessor().process_directory(input_dir, output_dir)

    assert result.files_processed == 3
    assert result.files_succeeded == 2
    assert result.files_failed == 1
    assert result.total_input_size_bytes == 400
    assert result.total_output_size_bytes == 400
    assert result.percent_reduction == "0.00%"
    failure = result.failed[0]
    assert Path(failure.input_path).name == "b.pdf"
    assert failure.error_message == "simulated write failure"
    assert sorted(path.name for path in output_dir.iterdir()) == ["a.pdf", "c.pdf"]


def test_batch_mirrors_relative_paths_when_recursive(tmp_path: Path) -> None:
    input_dir = tmp_path / "in"
    output_dir = tmp_path / "out"
    write_pdf_with_pages(input_dir / "top.pdf", page_specs=[text_page("top")])
    write_pdf_with_pages(input_dir / "sub" / "inner.pdf", page_specs=[text_page("inner")])

    result = BatchProcessor().process_directory(input_dir, output_dir, recursive=True)

    assert result.files_succeeded == 2
    assert (output_dir / "top.pdf").exists()
    assert (output_dir / "sub" / "inner.pdf").exists()
    for record in result.succeeded:
        assert record.savings_bytes == record.input_size_bytes - record.output_size_bytes


def test_batch_output_suffix_in_place_is_not_reprocessed(tmp_path: Path) -> None:
    input_dir = tmp_path / "in"
    write_pdf_with_pages(input_dir / "doc.pdf", page_specs=[text_page("doc")])
    processor = BatchProcessor()

    processor.process_directory(input_dir, input_dir, output_suffix="-compressed")
    second = processor.process_directory(input_dir, input_dir, output_suffix="-compressed")

    assert second.files_processed == 1
    assert sorted(path.name for path in input_dir.iterdir()) == ["doc-compressed.pdf", "doc.pdf"]


def test_batch_does_not_rediscover_nested_output_dir(tmp_path: Path) -> None:
    input_dir = tmp_path / "in"
    write_pdf_with_pages(input_dir / "doc.pdf", page_specs=[text_page("doc")])
    output_dir = input_dir / "compressed"
    processor = BatchProcessor()

    processor.process_directory(input_dir, output_dir, recursive=True)
    second = processor.process_directory(input_dir, output_dir, recursive=True)

    assert [Path(record.input_path).name for record in second.files] == ["doc.pdf"]


def test_progress_events_precede_each_file(tmp_path: Path) -> None:
    input_dir = tmp_path / "in"
    for name in ("a.pdf", "b.pdf", "c.pdf", "d.pdf"):
        write_bytes_file(input_dir / name, size=50)
    events: list[ProgressEvent] = []

    result = BatchProcessor().process_directory(
        input_dir,
        tmp_path / "out",
        progress_callback=events.append,
    )

    assert [event.current_index for event in events] == [0, 1, 2, 3]
    assert all(event.total_files == 4 for event in events)
    assert [event.progress_percent for event in events] == [0.0, 25.0, 50.0, 75.0]
    assert [event.current_file for event in events] == [record.input_path for record in result.files]


def test_failing_progress_callback_does_not_abort_batch(tmp_path: Path) -> None:
    input_dir = tmp_path / "in"
    write_bytes_file(input_dir / "a.pdf", size=50)
    write_bytes_file(input_dir / "b.pdf", size=50)

    def explode(event: ProgressEvent) -> None:
        raise RuntimeError("display closed")

    result = BatchProcessor().process_directory(input_dir, tmp_path / "out", progress_callback=explode)

    assert result.files_succeeded == 2


def test_cancel_between_files_keeps_totals_consistent(tmp_path: Path) -> None:
    input_dir = tmp_path / "in"
    for name in ("a.pdf", "b.pdf", "c.pdf"):
        write_bytes_file(input_dir / name, size=100)
    cancel = threading.Event()

    def cancel_after_first(event: ProgressEvent) -> None:
        cancel.set()

    result = BatchProcessor().process_directory(
        input_dir,
        tmp_path / "out",
        progress_callback=cancel_after_first,
        cancel_event=cancel,
    )

    assert result.cancelled is True
    assert result.files_found == 3
    assert result.files_processed == 1
    assert result.files_succeeded + result.files_failed == result.files_processed
    assert result.total_input_size_bytes == 100


def test_parallel_batch_keeps_discovery_order(tmp_path: Path, flaky_compress) -> None:
    input_dir = tmp_path / "in"
    sizes = {"a.pdf": 100, "b.pdf": 200, "c.pdf": 300, "d.pdf": 400, "e.pdf": 500}
    for name, size in sizes.items():
        write_bytes_file(input_dir / name, size=size)
    expected_order = [str(path) for path in discover_pdfs(input_dir)]

    result = BatchProcessor(workers=3).process_directory(input_dir, tmp_path / "out")

    assert [record.input_path for record in result.files] == expected_order
    assert result.files_processed == 5
    assert result.files_failed == 1
    assert result.total_input_size_bytes == 1300
    assert all(
        isinstance(record, FileFailure) == (Path(record.input_path).name == "b.pdf")
        for record in result.files
    )


def test_batch_processor_rejects_invalid_worker_count() -> None:
    with pytest.raises(ValueError):
        BatchProcessor(workers=0)


def test_batch_processor_rejects_options_alongside_compressor() -> None:
    with pytest.raises(TypeError):
        BatchProcessor(CompressionOptions(image_quality=40), compressor=PDFCompressor())


def test_batch_processor_options_delegate_to_compressor() -> None:
    compressor = PDFCompressor()
    processor = BatchProcessor(compressor=compressor, image_quality=55)

    processor.set_options(grayscale=True)

    assert compressor.options.image_quality == 55
    assert processor.options.grayscale is True
    assert isinstance(processor.compressor, PDFCompressor)


def test_batch_records_are_compression_results(tmp_path: Path) -> None:
    input_dir = tmp_path / "in"
    write_pdf_with_pages(input_dir / "doc.pdf", page_specs=[text_page("doc")])

    result = BatchProcessor().process_directory(input_dir, tmp_path / "out")

    assert all(isinstance(record, CompressionResult) for record in result.files)
