"""Typed models for pdfcompressor options, artifacts and results."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from pathlib import Path

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

IMAGE_QUALITY_RANGE = (1, 100)
COMPRESSION_LEVEL_RANGE = (1, 5)


def format_percent_reduction(savings_bytes: int, input_size_bytes: int) -> str:
    """Format savings relative to the input size as ``"12.34%"``."""
    if input_size_bytes == 0:
        return "0.00%"
    return f"{savings_bytes / input_size_bytes * 100:.2f}%"


@dataclass(frozen=True)
class CompressionOptions:
    """Fully populated settings for one compression run."""

    optimize_images: bool = True
    image_quality: int = 80
    remove_metadata: bool = True
    compression_level: int = 3
    grayscale: bool = False

    def __post_init__(self) -> None:
        _check_range("image_quality", self.image_quality, IMAGE_QUALITY_RANGE)
        _check_range("compression_level", self.compression_level, COMPRESSION_LEVEL_RANGE)

    def merged(self, **overrides: bool | int | None) -> CompressionOptions:
        """Return a copy with non-``None`` overrides applied on top of these options."""
        changes = {key: value for key, value in overrides.items() if value is not None}
        if not changes:
            return self
        return replace(self, **changes)

    def to_dict(self) -> dict[str, JSONValue]:
        return asdict(self)


@dataclass(frozen=True)
class Artifact:
    """Document bytes at a filesystem location, with their measured size."""

    path: Path
    size_bytes: int

    @classmethod
    def measure(cls, path: Path) -> Artifact:
        return cls(path=path, size_bytes=path.stat().st_size)


@dataclass(frozen=True)
class StageOutcome:
    """Result of running one stage; ``artifact`` is the input when the stage failed."""

    stage: str
    succeeded: bool
    artifact: Artifact
    error_message: str | None = None
    capability_gaps: tuple[str, ...] = ()


@dataclass(frozen=True)
class CompressionResult:
    """Size statistics for a single compressed PDF."""

    input_path: str
    output_path: str
    input_size_bytes: int
    output_size_bytes: int
    stage_warnings: list[str] = field(default_factory=list)
    capability_gaps: list[str] = field(default_factory=list)

    @property
    def savings_bytes(self) -> int:
        # Negative when the stages inflated the file.
        return self.input_size_bytes - self.output_size_bytes

    @property
    def percent_reduction(self) -> str:
        return format_percent_reduction(self.savings_bytes, self.input_size_bytes)


@dataclass(frozen=True)
class FileFailure:
    """A batch entry whose pipeline run raised a fatal error."""

    input_path: str
    output_path: str
    error_message: str


FileRecord = CompressionResult | FileFailure


@dataclass(frozen=True)
class BatchResult:
    """Aggregated result of one batch run, records kept in discovery order."""

    files_found: int = 0
    files: list[FileRecord] = field(default_factory=list)
    cancelled: bool = False

    @property
    def succeeded(self) -> list[CompressionResult]:
        return [record for record in self.files if isinstance(record, CompressionResult)]

    @property
    def failed(self) -> list[FileFailure]:
        return [record for record in self.files if isinstance(record, FileFailure)]

    @property
    def files_processed(self) -> int:
        return len(self.files)

    @property
    def files_succeeded(self) -> int:
        return len(self.succeeded)

    @property
    def files_failed(self) -> int:
        return len(self.failed)

    @property
    def total_input_size_bytes(self) -> int:
        return sum(result.input_size_bytes for result in self.succeeded)

    @property
    def total_output_size_bytes(self) -> int:
        return sum(result.output_size_bytes for result in self.succeeded)

    @property
    def total_savings_bytes(self) -> int:
        return self.total_input_size_bytes - self.total_output_size_bytes

    @property
    def percent_reduction(self) -> str:
        return format_percent_reduction(self.total_savings_bytes, self.total_input_size_bytes)


@dataclass(frozen=True)
class ProgressEvent:
    """Notification sent before a batch starts work on one file."""

    current_file: str
    current_index: int
    total_files: int

    @property
    def progress_percent(self) -> float:
        if self.total_files == 0:
            return 0.0
        return self.current_index / self.total_files * 100


def _check_range(name: str, value: int, bounds: tuple[int, int]) -> None:
    low, high = bounds
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer, got {value!r}")
    if not low <= value <= high:
        raise ValueError(f"{name} must be between {low} and {high}, got {value}")
