"""Directory-wide batch compression for pdfcompressor."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
import logging
import os
from pathlib import Path
import threading

from pdfcompressor.compressor import PDFCompressor
from pdfcompressor.models import (
    BatchResult,
    CompressionOptions,
    FileFailure,
    FileRecord,
    ProgressEvent,
)

logger = logging.getLogger(__name__)

PDF_SUFFIX = ".pdf"

ProgressCallback = Callable[[ProgressEvent], None]


@dataclass(frozen=True)
class _Job:
    index: int
    input_path: Path
    output_path: Path


def discover_pdfs(
    root: Path,
    recursive: bool = False,
    exclude_dir: Path | None = None,
    skip_suffix: str | None = None,
) -> list[Path]:
    """Collect PDFs under ``root`` in directory-listing order.

    Subdirectories are walked depth-first with an explicit stack when
    ``recursive`` is set. Files inside ``exclude_dir`` and files whose stem
    already ends with ``skip_suffix`` are left out.
    """
    exclude_resolved = exclude_dir.resolve() if exclude_dir is not None else None
    root_resolved = root.resolve()
    found: list[Path] = []
    # One pending-entry iterator per open directory level.
    stack: list[Iterator[os.DirEntry[str]]] = [iter(_list_directory(root))]

    while stack:
        entry = next(stack[-1], None)
        if entry is None:
            stack.pop()
            continue
        path = Path(entry.path)
        if entry.is_dir(follow_symlinks=False):
            if recursive and not _is_excluded(path, exclude_resolved, root_resolved):
                stack.append(iter(_list_directory(path)))
            continue
        if not entry.is_file() or not entry.name.lower().endswith(PDF_SUFFIX):
            continue
        if skip_suffix and path.stem.endswith(skip_suffix):
            continue
        if _is_excluded(path, exclude_resolved, root_resolved):
            continue
        found.append(path)

    return found


def destination_path(
    input_file: Path,
    input_dir: Path,
    output_dir: Path,
    suffix: str = "",
) -> Path:
    """Mirror ``input_file``'s location under ``output_dir``, optionally suffixing its stem."""
    relative = input_file.relative_to(input_dir)
    if suffix:
        relative = relative.with_name(f"{relative.stem}{suffix}{relative.suffix}")
    return output_dir / relative


class BatchProcessor:
    """Compress every PDF in a directory tree, one pipeline run per file.

    Pass either ``options`` or a ready-made ``compressor``, not both; keyword
    overrides are merged into whichever compressor ends up in use.
    """

    def __init__(
        self,
        options: CompressionOptions | None = None,
        *,
        compressor: PDFCompressor | None = None,
        workers: int = 1,
        **overrides: bool | int | None,
    ) -> None:
        if workers < 1:
            raise ValueError(f"workers must be at least 1, got {workers}")
        if options is not None and compressor is not None:
            raise TypeError("pass options to the compressor, not alongside it")
        self.compressor = compressor or PDFCompressor(options)
        self.compressor.set_options(**overrides)
        self.workers = workers

    @property
    def options(self) -> CompressionOptions:
        return self.compressor.options

    def set_options(self, **overrides: bool | int | None) -> BatchProcessor:
        self.compressor.set_options(**overrides)
        return self

    def process_directory(
        self,
        input_dir: Path | str,
        output_dir: Path | str,
        *,
        recursive: bool = False,
        progress_callback: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
        output_suffix: str = "",
    ) -> BatchResult:
        """Compress all PDFs in ``input_dir`` into a mirrored tree under ``output_dir``."""
        input_dir = Path(input_dir)
        output_dir = Path(output_dir)
        if not input_dir.exists():
            raise FileNotFoundError(f"Input directory does not exist: {input_dir}")
        if not input_dir.is_dir():
            raise NotADirectoryError(f"Input path is not a directory: {input_dir}")
        output_dir.mkdir(parents=True, exist_ok=True)

        exclude_dir = output_dir if _is_nested(output_dir, input_dir) else None
        files = discover_pdfs(
            input_dir,
            recursive=recursive,
            exclude_dir=exclude_dir,
            skip_suffix=output_suffix or None,
        )
        if not files:
            return BatchResult()

        jobs = [
            _Job(
                index=index,
                input_path=path,
                output_path=destination_path(path, input_dir, output_dir, output_suffix),
            )
            for index, path in enumerate(files)
        ]
        if self.workers == 1:
            records, cancelled = self._run_sequential(jobs, progress_callback, cancel_event)
        else:
            records, cancelled = self._run_parallel(jobs, progress_callback, cancel_event)

        result = BatchResult(files_found=len(files), files=records, cancelled=cancelled)
        logger.info(
            "Batch finished: %d processed, %d failed, %s saved",
            result.files_processed,
            result.files_failed,
            result.percent_reduction,
        )
        return result

    def _run_sequential(
        self,
        jobs: list[_Job],
        progress_callback: ProgressCallback | None,
        cancel_event: threading.Event | None,
    ) -> tuple[list[FileRecord], bool]:
        records: list[FileRecord] = []
        for job in jobs:
            if cancel_event is not None and cancel_event.is_set():
                return records, True
            _notify(progress_callback, job, len(jobs))
            records.append(self._process_one(job))
        return records, False

    def _run_parallel(
        self,
        jobs: list[_Job],
        progress_callback: ProgressCallback | None,
        cancel_event: threading.Event | None,
    ) -> tuple[list[FileRecord], bool]:
        completed: dict[int, FileRecord] = {}
        pending: dict[Future[FileRecord], int] = {}
        cancelled = False

        with ThreadPoolExecutor(max_workers=self.workers) as executor:
            for job in jobs:
                if cancel_event is not None and cancel_event.is_set():
                    cancelled = True
                    break
                while len(pending) >= self.workers:
                    _collect(pending, completed, return_when=FIRST_COMPLETED)
                _notify(progress_callback, job, len(jobs))
                pending[executor.submit(self._process_one, job)] = job.index
            while pending:
                _collect(pending, completed, return_when=FIRST_COMPLETED)

        # Replay in discovery order regardless of completion order.
        return [completed[index] for index in sorted(completed)], cancelled

    def _process_one(self, job: _Job) -> FileRecord:
        try:
            job.output_path.parent.mkdir(parents=True, exist_ok=True)
            return self.compressor.compress(job.input_path, job.output_path)
        except Exception as exc:
            logger.error("Error processing %s: %s", job.input_path, exc)
            return FileFailure(
                input_path=str(job.input_path),
                output_path=str(job.output_path),
                error_message=str(exc),
            )


def _collect(
    pending: dict[Future[FileRecord], int],
    completed: dict[int, FileRecord],
    return_when: str,
) -> None:
    done, _ = wait(pending, return_when=return_when)
    for future in done:
        completed[pending.pop(future)] = future.result()


def _notify(progress_callback: ProgressCallback | None, job: _Job, total: int) -> None:
    if progress_callback is None:
        return
    event = ProgressEvent(
        current_file=str(job.input_path),
        current_index=job.index,
        total_files=total,
    )
    try:
        progress_callback(event)
    except Exception as exc:
        logger.warning("Progress callback failed for %s: %s", job.input_path, exc)


def _list_directory(directory: Path) -> list[os.DirEntry[str]]:
    with os.scandir(directory) as entries:
        return list(entries)


def _is_nested(child: Path, parent: Path) -> bool:
    child_resolved = child.resolve()
    parent_resolved = parent.resolve()
    return child_resolved != parent_resolved and child_resolved.is_relative_to(parent_resolved)


def _is_excluded(path: Path, exclude_resolved: Path | None, root_resolved: Path) -> bool:
    if exclude_resolved is None or exclude_resolved == root_resolved:
        return False
    return path.resolve().is_relative_to(exclude_resolved)
