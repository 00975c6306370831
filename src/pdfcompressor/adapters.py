"""Codec adapters wrapping pypdf and Pillow behind narrow interfaces."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from io import BytesIO

from PIL import Image
from pypdf import PageObject, PdfReader, PdfWriter
from pypdf.filters import FlateDecode
from pypdf.generic import EncodedStreamObject, NameObject, PdfObject, StreamObject

INFO_FIELDS = ("/Title", "/Author", "/Subject", "/Keywords", "/Producer", "/Creator")

# Maps a single stream filter to the encoder family used to re-encode it.
FILTER_TO_FORMAT = {
    "/DCTDecode": "jpeg",
    "/FlateDecode": "png",
}

PNG_ZLIB_LEVEL = 9
JPEG_BACKGROUND = (255, 255, 255)


class CodecError(Exception):
    """Base error for failures inside an external codec."""


class DocumentCodecError(CodecError):
    """The PDF codec could not decode or encode a document."""


class ImageRecompressionError(CodecError):
    """The image codec could not re-encode an embedded image."""


class DocumentCodec:
    """Load, edit and serialize PDF documents with pypdf."""

    def load(self, data: bytes) -> PdfWriter:
        try:
            reader = PdfReader(BytesIO(data))
            encrypted = reader.is_encrypted
        except Exception as exc:
            raise DocumentCodecError(f"read_error: {exc}") from exc
        if encrypted:
            raise DocumentCodecError("encrypted")
        try:
            return PdfWriter(clone_from=reader)
        except Exception as exc:
            raise DocumentCodecError(f"clone_error: {exc}") from exc

    def save(self, document: PdfWriter) -> bytes:
        buffer = BytesIO()
        try:
            document.write(buffer)
        except Exception as exc:
            raise DocumentCodecError(f"write_error: {exc}") from exc
        return buffer.getvalue()

    def pages(self, document: PdfWriter) -> list[PageObject]:
        return list(document.pages)

    def clear_info_fields(self, document: PdfWriter, fields: Iterable[str] = INFO_FIELDS) -> None:
        """Blank the given document information entries."""
        document.add_metadata({name: "" for name in fields})

    def drop_xmp_metadata(self, document: PdfWriter) -> bool:
        """Remove the catalog's XMP metadata stream, returning whether one existed."""
        root = document.root_object
        if "/Metadata" not in root:
            return False
        del root["/Metadata"]
        return True

    def stream_filters(self, stream: StreamObject) -> list[str]:
        """Return the stream's filter names in decoding order."""
        if "/Filter" not in stream:
            return []
        value = stream["/Filter"]
        if isinstance(value, list):
            return [str(name) for name in value]
        return [str(value)]

    def stored_bytes(self, stream: StreamObject) -> bytes:
        """Return the stream's bytes exactly as they are written to the file."""
        # pypdf keeps the still-encoded payload in _data.
        return stream._data

    def replace_stored_bytes(
        self,
        stream: StreamObject,
        data: bytes,
        entries: Mapping[str, PdfObject],
        dropped_keys: Sequence[str] = (),
    ) -> None:
        """Swap a stream's encoded payload in place, keeping its object number."""
        for key in dropped_keys:
            if key in stream:
                del stream[key]
        for key, value in entries.items():
            stream[NameObject(key)] = value
        stream._data = data
        if isinstance(stream, EncodedStreamObject):
            stream.decoded_self = None


class ImageCodec:
    """Re-encode raster images with Pillow and zlib."""

    def recompress(self, data: bytes, quality: int, image_format: str) -> bytes:
        """Re-encode one embedded image.

        ``png`` takes the image's decoded samples and deflates them again at
        the highest zlib level, which is lossless. ``jpeg`` takes any image
        file Pillow can open and encodes it as JPEG at ``quality``.
        """
        try:
            if image_format == "png":
                return FlateDecode.encode(data, PNG_ZLIB_LEVEL)
            with Image.open(BytesIO(data)) as im:
                im.load()
                buffer = BytesIO()
                _to_jpeg_mode(im).save(buffer, format="JPEG", quality=int(quality), optimize=True)
        except (OSError, ValueError) as exc:
            raise ImageRecompressionError(f"image_error: {exc}") from exc
        return buffer.getvalue()


def image_format_for(stream_filters: Sequence[str]) -> str:
    """Return the encoder family for an image stored with ``stream_filters``.

    Only a single DCT or Flate filter keeps its family; everything else,
    including unfiltered samples, is re-encoded as JPEG.
    """
    if len(stream_filters) != 1:
        return "jpeg"
    return FILTER_TO_FORMAT.get(stream_filters[0], "jpeg")


def _to_jpeg_mode(im: Image.Image) -> Image.Image:
    if _has_alpha(im):
        rgba = im.convert("RGBA")
        background = Image.new("RGBA", rgba.size, JPEG_BACKGROUND + (255,))
        return Image.alpha_composite(background, rgba).convert("RGB")
    if im.mode in ("RGB", "L"):
        return im
    return im.convert("RGB")


def _has_alpha(im: Image.Image) -> bool:
    if im.mode in ("RGBA", "LA"):
        return True
    return im.mode == "P" and "transparency" in im.info
