"""Single-file compression pipeline for pdfcompressor."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
import logging
from pathlib import Path
import shutil
import tempfile

from pdfcompressor.adapters import DocumentCodec, ImageCodec
from pdfcompressor.models import Artifact, CompressionOptions, CompressionResult
from pdfcompressor.stages import build_stages

logger = logging.getLogger(__name__)

WORKSPACE_PREFIX = "pdfcompressor-"
SOURCE_ARTIFACT_NAME = "00-source.pdf"


class PDFCompressor:
    """Run the fixed stage sequence over one PDF at a time.

    Options given to the constructor are the instance defaults; keyword
    overrides passed to :meth:`compress` apply to that call only.
    """

    def __init__(
        self,
        options: CompressionOptions | None = None,
        *,
        document_codec: DocumentCodec | None = None,
        image_codec: ImageCodec | None = None,
        workspace_root: Path | None = None,
        **overrides: bool | int | None,
    ) -> None:
        self._options = (options or CompressionOptions()).merged(**overrides)
        self.stages = build_stages(document_codec=document_codec, image_codec=image_codec)
        self.workspace_root = workspace_root

    @property
    def options(self) -> CompressionOptions:
        return self._options

    def set_options(self, **overrides: bool | int | None) -> PDFCompressor:
        """Merge ``overrides`` into the instance options and return ``self``."""
        self._options = self._options.merged(**overrides)
        return self

    def compress(
        self,
        input_path: Path | str,
        output_path: Path | str,
        **overrides: bool | int | None,
    ) -> CompressionResult:
        """Compress ``input_path`` into ``output_path`` and report the size change."""
        options = self._options.merged(**overrides)
        input_path = Path(input_path)
        output_path = Path(output_path)

        if not input_path.exists():
            raise FileNotFoundError(f"Input file does not exist: {input_path}")
        if not input_path.is_file():
            raise IsADirectoryError(f"Input path is not a file: {input_path}")

        stage_warnings: list[str] = []
        capability_gaps: list[str] = []

        with self._workspace() as workspace:
            source = workspace / SOURCE_ARTIFACT_NAME
            shutil.copyfile(input_path, source)
            current = Artifact.measure(source)
            input_size = current.size_bytes

            for position, stage in enumerate(self.stages, start=1):
                if not stage.is_enabled(options):
                    continue
                outcome = stage.optimize(
                    current,
                    options,
                    workspace / f"{position:02d}-{stage.name}.pdf",
                )
                current = outcome.artifact
                if not outcome.succeeded:
                    stage_warnings.append(f"{stage.name}: {outcome.error_message}")
                for gap in outcome.capability_gaps:
                    if gap not in capability_gaps:
                        capability_gaps.append(gap)

            output_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(current.path, output_path)

        output_size = output_path.stat().st_size
        result = CompressionResult(
            input_path=str(input_path),
            output_path=str(output_path),
            input_size_bytes=input_size,
            output_size_bytes=output_size,
            stage_warnings=stage_warnings,
            capability_gaps=capability_gaps,
        )
        logger.info(
            "Compressed %s -> %s (%d -> %d bytes, %s)",
            input_path,
            output_path,
            input_size,
            output_size,
            result.percent_reduction,
        )
        return result

    @contextmanager
    def _workspace(self) -> Iterator[Path]:
        """Yield a private temporary directory that is removed afterwards."""
        if self.workspace_root is not None:
            self.workspace_root.mkdir(parents=True, exist_ok=True)
        workspace = Path(
            tempfile.mkdtemp(
                prefix=WORKSPACE_PREFIX,
                dir=str(self.workspace_root) if self.workspace_root is not None else None,
            )
        )
        try:
            yield workspace
        finally:
            _remove_workspace(workspace)


def _remove_workspace(workspace: Path) -> None:
    try:
        shutil.rmtree(workspace)
    except OSError as exc:
        logger.warning("Could not remove temporary workspace %s: %s", workspace, exc)
