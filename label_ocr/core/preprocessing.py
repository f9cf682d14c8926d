"""
Image variant generation for label OCR.

Loads the uploaded bytes once (EXIF orientation, bounded longest edge) and
derives the ordered crops/transforms each recognition zone should try.
A failed transform falls back to the plain crop; building variants never
fails a request except for undecodable or unsupported input.
"""

import io
import logging
from dataclasses import dataclass, field, replace
from typing import Callable, List, Optional, Tuple

import cv2
import numpy as np
from PIL import Image, ImageEnhance, ImageOps, UnidentifiedImageError

from .utils import (
    CropBox,
    ImageVariant,
    LabelOcrError,
    Mode,
    RecognitionZone,
    VariantTransform,
)

logger = logging.getLogger(__name__)

MAX_EDGE = 1600

# Crop regions as fractions of the bounded image: (left, top, width, height)
FULL_FRAME = (0.0, 0.0, 1.0, 1.0)
TOP_BAND = (0.0, 0.0, 1.0, 0.4)
MIDDLE_BAND = (0.0, 0.3, 1.0, 0.4)
BOTTOM_BAND = (0.0, 0.6, 1.0, 0.4)
CENTER_CROP = (0.15, 0.15, 0.7, 0.7)
BRAND_BAND = (0.15, 0.0, 0.7, 0.3)     # top-center
SIZE_BAND = (0.45, 0.55, 0.55, 0.45)   # bottom-right
LABEL_BAND = (0.05, 0.25, 0.9, 0.5)

GENERAL_CONTRAST = 1.15
BAND_CONTRAST = 1.25
FULL_SHARPEN = 1.0

# ftyp brands of containers the imaging stack cannot safely decode
FTYP_BRANDS = {
    "heic": "heic", "heix": "heic", "hevc": "heic", "hevx": "heic",
    "heim": "heic", "heis": "heic", "mif1": "heif", "msf1": "heif",
    "avif": "avif", "avis": "avif", "crx ": "cr3",
}

TRANSFORM_ERRORS = (OSError, ValueError, cv2.error)


class UnsupportedImageError(LabelOcrError):
    """Raised when the upload is a container we refuse to decode."""
    code = "unsupported_image_type"
    status_code = 415

    def __init__(self, message: str, image_format: str = "unknown"):
        super().__init__(message)
        self.image_format = image_format


def sniff_unsupported_format(data: bytes) -> Optional[str]:
    """
    Identify camera-RAW / HEIF-style containers by byte signature.

    Returns:
        Short format name, or None when the bytes look acceptable
    """
    head = bytes(data[:32])
    if len(head) >= 12 and head[4:8] == b"ftyp":
        brand = head[8:12].decode("latin-1").lower()
        if brand in FTYP_BRANDS:
            return FTYP_BRANDS[brand]
    if head.startswith(b"II*\x00") and head[8:10] == b"CR":
        return "cr2"
    if head.startswith(b"FUJIFILMCCD-RAW"):
        return "raf"
    if head[:4] in (b"IIRO", b"IIRS", b"MMOR"):
        return "orf"
    if head.startswith(b"IIU\x00"):
        return "rw2"
    return None


def otsu_threshold(image: Image.Image) -> Tuple[Image.Image, int]:
    """Binarize with Otsu; returns the image and the chosen level."""
    gray = np.array(image.convert("L"))
    level, binary = cv2.threshold(gray, 0, 255, cv2.THRESH_BINARY + cv2.THRESH_OTSU)
    return Image.fromarray(binary), int(level)


@dataclass
class VariantSet:
    """Every variant derived from one upload, grouped by zone."""
    source: Image.Image
    general: List[ImageVariant] = field(default_factory=list)
    brand: List[ImageVariant] = field(default_factory=list)
    size: List[ImageVariant] = field(default_factory=list)
    label_band: Optional[ImageVariant] = None

    def for_zone(self, zone: RecognitionZone) -> List[ImageVariant]:
        return {
            RecognitionZone.GENERAL: self.general,
            RecognitionZone.BRAND: self.brand,
            RecognitionZone.SIZE: self.size,
        }[zone]

    def primary_image_bytes(self, quality: int = 90) -> bytes:
        """JPEG of the first General variant (falls back to the source image)."""
        image = self.general[0].image if self.general else self.source
        buf = io.BytesIO()
        image.convert("RGB").save(buf, format="JPEG", quality=quality)
        return buf.getvalue()


class ImageVariantBuilder:
    """Builds per-zone variant lists, in priority order, for one upload."""

    def __init__(
        self,
        max_edge: int = MAX_EDGE,
        orientation_probe: Optional[Callable[[Image.Image], int]] = None
    ):
        self.max_edge = max_edge
        self.orientation_probe = orientation_probe

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    def load(self, data: bytes, mode: Mode) -> Image.Image:
        """Decode, apply EXIF orientation, bound the longest edge, fix rotation."""
        image_format = sniff_unsupported_format(data)
        if image_format:
            raise UnsupportedImageError(f"Unsupported image type: {image_format}", image_format)

        try:
            image = Image.open(io.BytesIO(data))
            image.load()
        except (UnidentifiedImageError, OSError) as e:
            raise UnsupportedImageError(f"Could not decode image: {e}") from e

        try:
            image = ImageOps.exif_transpose(image)
        except TRANSFORM_ERRORS as e:
            logger.warning("[Preprocess] EXIF transpose failed: %s", e)
        image = image.convert("RGB")

        if max(image.size) > self.max_edge:
            image.thumbnail((self.max_edge, self.max_edge), Image.Resampling.LANCZOS)

        if mode == Mode.THOROUGH:
            image = self._correct_orientation(image)
        return image

    def _correct_orientation(self, image: Image.Image) -> Image.Image:
        """Best-effort rotation fix from the engine's orientation probe."""
        if self.orientation_probe is None:
            return image
        try:
            degrees = int(self.orientation_probe(image)) % 360
        except Exception as e:
            logger.info("[Preprocess] Orientation detection skipped: %s", e)
            return image
        if degrees in (90, 180, 270):
            logger.debug("[Preprocess] Rotating %d degrees", degrees)
            return image.rotate(-degrees, expand=True)
        return image

    # -------------------------------------------------------------------------
    # Variants
    # -------------------------------------------------------------------------

    def build(self, data: bytes, mode: Mode, general_limit: Optional[int] = None) -> VariantSet:
        """
        Produce every zone's variant list for one upload.

        Args:
            data: Raw image bytes
            mode: FAST emits one variant per zone; THOROUGH adds bands and thresholds
            general_limit: Only render the first N General variants (None = all)

        Returns:
            VariantSet with general/brand/size lists and the label band
        """
        source = self.load(data, mode)
        thorough = mode == Mode.THOROUGH

        # best first: each band in gray, then thresholded, before the wider crops
        general_specs = [("full", FULL_FRAME, dict(contrast=GENERAL_CONTRAST, sharpen=FULL_SHARPEN))]
        if thorough:
            general_specs += [
                ("middle", MIDDLE_BAND, dict(grayscale=True, contrast=GENERAL_CONTRAST)),
                ("middle", MIDDLE_BAND, dict(threshold=True)),
                ("top", TOP_BAND, dict(grayscale=True, contrast=GENERAL_CONTRAST)),
                ("top", TOP_BAND, dict(threshold=True)),
                ("bottom", BOTTOM_BAND, dict(grayscale=True, contrast=GENERAL_CONTRAST)),
                ("center", CENTER_CROP, dict(grayscale=True, contrast=GENERAL_CONTRAST)),
            ]
        if general_limit is not None:
            general_specs = general_specs[:max(1, general_limit)]
        general = [self._variant(RecognitionZone.GENERAL, source, name, region, **options)
                   for name, region, options in general_specs]

        brand = [self._variant(RecognitionZone.BRAND, source, "brand", BRAND_BAND,
                               grayscale=True, contrast=BAND_CONTRAST)]
        if thorough:
            brand.append(self._variant(RecognitionZone.BRAND, source, "brand", BRAND_BAND,
                                       contrast=BAND_CONTRAST, threshold=True))
            brand.append(self._variant(RecognitionZone.BRAND, source, "brand", BRAND_BAND,
                                       contrast=BAND_CONTRAST, threshold=True, inverted=True))

        size = [self._variant(RecognitionZone.SIZE, source, "size", SIZE_BAND,
                              grayscale=True, contrast=BAND_CONTRAST)]
        if thorough:
            size.append(self._variant(RecognitionZone.SIZE, source, "size", SIZE_BAND,
                                      contrast=BAND_CONTRAST, threshold=True, inverted=True))

        variants = VariantSet(
            source=source,
            general=self._indexed(general),
            brand=self._indexed(brand),
            size=self._indexed(size),
            label_band=self._variant(RecognitionZone.GENERAL, source, "label", LABEL_BAND,
                                     grayscale=True, contrast=GENERAL_CONTRAST, sharpen=0.5),
        )
        logger.debug(
            "[Preprocess] %s: %d general, %d brand, %d size variants from %dx%d",
            mode.value, len(variants.general), len(variants.brand), len(variants.size),
            source.width, source.height,
        )
        return variants

    @staticmethod
    def _indexed(variants: List[ImageVariant]) -> List[ImageVariant]:
        return [replace(v, index=i) for i, v in enumerate(variants)]

    @staticmethod
    def crop_box(image: Image.Image, region: Tuple[float, float, float, float]) -> CropBox:
        left, top, width, height = region
        w, h = image.size
        return CropBox.clamped(
            round(w * left), round(h * top), round(w * width), round(h * height), w, h
        )

    def _variant(
        self,
        zone: RecognitionZone,
        source: Image.Image,
        name: str,
        region: Tuple[float, float, float, float],
        grayscale: bool = False,
        contrast: float = 1.0,
        sharpen: float = 0.0,
        threshold: bool = False,
        inverted: bool = False
    ) -> ImageVariant:
        crop = self.crop_box(source, region)
        plain = source.crop(crop.box)
        try:
            image = plain
            if grayscale or threshold or inverted:
                image = ImageOps.grayscale(image)
            if contrast != 1.0:
                image = ImageEnhance.Contrast(image).enhance(contrast)
            if sharpen:
                image = ImageEnhance.Sharpness(image).enhance(1.0 + sharpen)
            level = None
            if threshold:
                image, level = otsu_threshold(image)
            if inverted:
                image = ImageOps.invert(image.convert("L"))
            transform = VariantTransform(
                name=name, crop=crop, grayscale=grayscale or threshold or inverted,
                threshold=level, inverted=inverted, sharpen=sharpen,
            )
        except TRANSFORM_ERRORS as e:
            logger.warning("[Preprocess] %s/%s transform failed (%s), using plain crop",
                           zone.value, name, e)
            image = plain
            transform = VariantTransform(name=name, crop=crop)
        return ImageVariant(zone=zone, transform=transform, image=image)


def downscale(variant: ImageVariant, factor: float = 0.5) -> ImageVariant:
    """Smaller copy of a variant for sparse-layout reads; original on failure."""
    w, h = variant.image.size
    size = (max(1, round(w * factor)), max(1, round(h * factor)))
    try:
        image = variant.image.resize(size, Image.Resampling.LANCZOS)
    except TRANSFORM_ERRORS as e:
        logger.warning("[Preprocess] Downscale failed (%s), using original", e)
        return variant
    transform = replace(variant.transform, scale=variant.transform.scale * factor)
    return replace(variant, transform=transform, image=image)
