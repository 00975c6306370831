"""Size-reduction stages applied in a fixed order by the compression pipeline."""

from __future__ import annotations

from io import BytesIO
import logging
from pathlib import Path

from PIL import Image
from pypdf import PdfWriter
from pypdf.generic import NameObject, NumberObject, PdfObject, StreamObject

from pdfcompressor.adapters import DocumentCodec, ImageCodec, image_format_for
from pdfcompressor.models import Artifact, CompressionOptions, StageOutcome

logger = logging.getLogger(__name__)

# zlib level used for content streams at each compression level.
COMPRESSION_LEVEL_TO_ZLIB = {1: 1, 2: 3, 3: 6, 4: 8, 5: 9}
PAGE_REDUNDANT_KEYS = ("/Thumb", "/PieceInfo")
GRAYSCALE_GAP = "grayscale"


class Stage:
    """One independently failable transformation of a PDF artifact.

    ``optimize`` never raises: a stage that cannot do its job logs a warning
    and hands its input artifact on unchanged with ``succeeded=False``.
    """

    name = "stage"

    def __init__(self, document_codec: DocumentCodec | None = None) -> None:
        self.document_codec = document_codec or DocumentCodec()

    def is_enabled(self, options: CompressionOptions) -> bool:
        return True

    def capability_gaps(self, options: CompressionOptions) -> tuple[str, ...]:
        return ()

    def optimize(
        self,
        artifact: Artifact,
        options: CompressionOptions,
        output_path: Path,
    ) -> StageOutcome:
        """Transform ``artifact`` into ``output_path`` or fall back to passing it through."""
        if not self.is_enabled(options):
            return StageOutcome(stage=self.name, succeeded=True, artifact=artifact)

        gaps = self.capability_gaps(options)
        try:
            data = self._transform(artifact.path.read_bytes(), options)
            if data is None:
                return StageOutcome(
                    stage=self.name,
                    succeeded=True,
                    artifact=artifact,
                    capability_gaps=gaps,
                )
            output_path.write_bytes(data)
            produced = Artifact.measure(output_path)
        except Exception as exc:
            logger.warning(
                "Stage '%s' failed, using its input unchanged: %s",
                self.name,
                exc,
            )
            return StageOutcome(
                stage=self.name,
                succeeded=False,
                artifact=artifact,
                error_message=str(exc),
                capability_gaps=gaps,
            )

        return StageOutcome(
            stage=self.name,
            succeeded=True,
            artifact=produced,
            capability_gaps=gaps,
        )

    def _transform(self, data: bytes, options: CompressionOptions) -> bytes | None:
        """Return rewritten PDF bytes, or ``None`` when the input should pass through."""
        raise NotImplementedError


class MetadataStripStage(Stage):
    """Blank the document information fields and drop the XMP stream."""

    name = "metadata-strip"

    def is_enabled(self, options: CompressionOptions) -> bool:
        return options.remove_metadata

    def _transform(self, data: bytes, options: CompressionOptions) -> bytes | None:
        document = self.document_codec.load(data)
        self.document_codec.clear_info_fields(document)
        self.document_codec.drop_xmp_metadata(document)
        return self.document_codec.save(document)


class ImageRecompressStage(Stage):
    """Re-encode embedded raster images, keeping only the ones that shrink.

    Sizes are compared on the stored stream bytes, which is what ends up in
    the file. Flate images are deflated again losslessly and stay Flate, DCT
    images stay JPEG, and any other image becomes a DCT stream.
    """

    name = "image-recompress"

    def __init__(
        self,
        document_codec: DocumentCodec | None = None,
        image_codec: ImageCodec | None = None,
    ) -> None:
        super().__init__(document_codec)
        self.image_codec = image_codec or ImageCodec()

    def is_enabled(self, options: CompressionOptions) -> bool:
        return options.optimize_images

    def _transform(self, data: bytes, options: CompressionOptions) -> bytes | None:
        document = self.document_codec.load(data)
        seen: set[int] = set()
        replaced = 0
        for page in self.document_codec.pages(document):
            for image in page.images:
                reference = image.indirect_reference
                if reference is None or reference.idnum in seen:
                    continue
                seen.add(reference.idnum)
                xobject = reference.get_object()
                if self._recompress_image(xobject, image.data, options.image_quality):
                    replaced += 1

        if not replaced:
            return None
        logger.debug("Replaced %d image(s) at quality %d", replaced, options.image_quality)
        return self.document_codec.save(document)

    def _recompress_image(self, xobject: StreamObject, rendered: bytes, quality: int) -> bool:
        """Re-encode one image XObject in place, returning whether it was replaced.

        ``rendered`` is the image as an encoded file, used when the stored
        stream is neither DCT nor Flate.
        """
        if xobject.get("/ImageMask", False):
            return False
        filters = self.document_codec.stream_filters(xobject)
        image_format = image_format_for(filters)
        stored = self.document_codec.stored_bytes(xobject)

        if image_format == "png":
            recompressed = self.image_codec.recompress(xobject.get_data(), quality, image_format)
            if len(recompressed) >= len(stored):
                return False
            self.document_codec.replace_stored_bytes(
                xobject,
                recompressed,
                {"/Filter": NameObject("/FlateDecode")},
                dropped_keys=("/DecodeParms",),
            )
            return True

        source = stored if filters == ["/DCTDecode"] else rendered
        recompressed = self.image_codec.recompress(source, quality, image_format)
        if len(recompressed) >= len(stored):
            return False
        entries: dict[str, PdfObject] = {"/Filter": NameObject("/DCTDecode")}
        dropped_keys = ["/DecodeParms"]
        output_mode = _image_mode(recompressed)
        if source is not stored or _image_mode(stored) != output_mode:
            entries["/ColorSpace"] = NameObject(
                "/DeviceGray" if output_mode == "L" else "/DeviceRGB"
            )
            entries["/BitsPerComponent"] = NumberObject(8)
            dropped_keys.append("/Decode")
        self.document_codec.replace_stored_bytes(xobject, recompressed, entries, dropped_keys)
        return True


class QualityReduceStage(Stage):
    """Recompress content streams and pack objects according to the compression level."""

    name = "quality-reduce"

    def capability_gaps(self, options: CompressionOptions) -> tuple[str, ...]:
        if options.grayscale:
            logger.warning(
                "Grayscale conversion was requested but pypdf cannot convert colour spaces; "
                "colours are left unchanged."
            )
            return (GRAYSCALE_GAP,)
        return ()

    def _transform(self, data: bytes, options: CompressionOptions) -> bytes | None:
        document = self.document_codec.load(data)
        zlib_level = COMPRESSION_LEVEL_TO_ZLIB[options.compression_level]
        for page in self.document_codec.pages(document):
            page.compress_content_streams(level=zlib_level)
        if options.compression_level >= 3:
            document.compress_identical_objects(
                remove_identicals=True,
                remove_orphans=options.compression_level >= 4,
            )
        return self.document_codec.save(document)


class PageOptimizeStage(Stage):
    """Drop annotations, form fields, thumbnails and private page data."""

    name = "page-optimize"

    def _transform(self, data: bytes, options: CompressionOptions) -> bytes | None:
        document = self.document_codec.load(data)
        document.remove_annotations(subtypes=None)
        _drop_interactive_form(document)
        for page in self.document_codec.pages(document):
            for key in PAGE_REDUNDANT_KEYS:
                if key in page:
                    del page[key]
        document.compress_identical_objects(remove_identicals=False, remove_orphans=True)
        return self.document_codec.save(document)


def build_stages(
    document_codec: DocumentCodec | None = None,
    image_codec: ImageCodec | None = None,
) -> tuple[Stage, ...]:
    """Return the pipeline stages in their required order."""
    document_codec = document_codec or DocumentCodec()
    return (
        MetadataStripStage(document_codec),
        ImageRecompressStage(document_codec, image_codec),
        QualityReduceStage(document_codec),
        PageOptimizeStage(document_codec),
    )


def _drop_interactive_form(document: PdfWriter) -> None:
    root = document.root_object
    for key in ("/AcroForm", "/PieceInfo"):
        if key in root:
            del root[key]


def _image_mode(data: bytes) -> str:
    with Image.open(BytesIO(data)) as im:
        return im.mode
