"""
Unit tests for image loading and variant generation (core/preprocessing.py).

Usage:
    pytest label_ocr/tests/test_preprocessing.py -v
"""

import io

import pytest
from PIL import Image

from label_ocr.core import preprocessing
from label_ocr.core.preprocessing import (
    ImageVariantBuilder,
    UnsupportedImageError,
    downscale,
    sniff_unsupported_format,
)
from label_ocr.core.utils import CropBox, Mode, RecognitionZone


# =============================================================================
# Format Sniffing
# =============================================================================

class TestSniffing:
    """Byte-signature rejection of HEIF and camera RAW containers."""

    def test_heic(self, heic_bytes):
        assert sniff_unsupported_format(heic_bytes) == "heic"

    def test_avif(self):
        assert sniff_unsupported_format(b"\x00\x00\x00\x1cftypavif" + b"\x00" * 20) == "avif"

    def test_canon_raw(self):
        assert sniff_unsupported_format(b"II*\x00\x10\x00\x00\x00CR\x02\x00" + b"\x00" * 20) == "cr2"
        assert sniff_unsupported_format(b"\x00\x00\x00\x18ftypcrx " + b"\x00" * 20) == "cr3"

    def test_other_raw(self):
        assert sniff_unsupported_format(b"FUJIFILMCCD-RAW 0201") == "raf"
        assert sniff_unsupported_format(b"IIRO\x08\x00\x00\x00") == "orf"
        assert sniff_unsupported_format(b"IIU\x00\x18\x00\x00\x00") == "rw2"

    def test_common_formats_pass(self, label_bytes, png_bytes):
        assert sniff_unsupported_format(label_bytes) is None
        assert sniff_unsupported_format(png_bytes) is None

    def test_short_input(self):
        assert sniff_unsupported_format(b"") is None
        assert sniff_unsupported_format(b"ftyp") is None


# =============================================================================
# Loading
# =============================================================================

class TestLoading:
    """Decode, EXIF transpose, bounded edge."""

    def test_unsupported_raises(self, heic_bytes):
        with pytest.raises(UnsupportedImageError) as exc:
            ImageVariantBuilder().load(heic_bytes, Mode.FAST)
        assert exc.value.image_format == "heic"
        assert exc.value.code == "unsupported_image_type"
        assert exc.value.status_code == 415

    def test_undecodable_raises(self, junk_bytes):
        with pytest.raises(UnsupportedImageError):
            ImageVariantBuilder().load(junk_bytes, Mode.FAST)

    def test_longest_edge_bounded(self, large_bytes):
        image = ImageVariantBuilder(max_edge=1600).load(large_bytes, Mode.FAST)
        assert max(image.size) == 1600
        assert image.mode == "RGB"

    def test_small_image_not_upscaled(self, label_bytes):
        image = ImageVariantBuilder().load(label_bytes, Mode.FAST)
        assert image.size == (800, 600)

    def test_exif_orientation_applied(self):
        image = Image.new("RGB", (400, 200), "white")
        exif = image.getexif()
        exif[0x0112] = 6  # rotated 90 CW
        buf = io.BytesIO()
        image.save(buf, format="JPEG", exif=exif.tobytes())
        loaded = ImageVariantBuilder().load(buf.getvalue(), Mode.FAST)
        assert loaded.size == (200, 400)


class TestOrientation:
    """Engine orientation probe: thorough only, never fatal."""

    def test_probe_skipped_in_fast_mode(self, label_bytes):
        calls = []
        builder = ImageVariantBuilder(orientation_probe=lambda img: calls.append(img) or 90)
        image = builder.load(label_bytes, Mode.FAST)
        assert calls == []
        assert image.size == (800, 600)

    def test_probe_rotates_in_thorough_mode(self, label_bytes):
        builder = ImageVariantBuilder(orientation_probe=lambda img: 90)
        assert builder.load(label_bytes, Mode.THOROUGH).size == (600, 800)

    def test_probe_failure_is_not_fatal(self, label_bytes):
        def broken(img):
            raise RuntimeError("osd failed")
        builder = ImageVariantBuilder(orientation_probe=broken)
        assert builder.load(label_bytes, Mode.THOROUGH).size == (800, 600)


# =============================================================================
# Variants
# =============================================================================

class TestVariants:
    """Per-zone variant lists."""

    def test_fast_variants(self, label_bytes):
        variants = ImageVariantBuilder().build(label_bytes, Mode.FAST)
        assert len(variants.general) == 1
        assert len(variants.brand) == 1
        assert len(variants.size) == 1
        assert variants.label_band is not None
        full = variants.general[0]
        assert full.transform.name == "full"
        assert full.transform.sharpen > 0
        assert full.image.size == (800, 600)

    def test_thorough_variants(self, label_bytes):
        variants = ImageVariantBuilder().build(label_bytes, Mode.THOROUGH)
        assert [v.transform.name for v in variants.general] == [
            "full", "middle", "middle", "top", "top", "bottom", "center",
        ]
        assert variants.general[1].transform.threshold is None
        assert variants.general[2].transform.threshold is not None
        assert variants.general[4].transform.threshold is not None
        assert len(variants.brand) == 3
        assert variants.brand[1].transform.threshold is not None
        assert variants.brand[2].transform.inverted
        assert len(variants.size) == 2
        assert variants.size[1].transform.inverted

    def test_general_limit_renders_only_leading_variants(self, label_bytes):
        variants = ImageVariantBuilder().build(label_bytes, Mode.THOROUGH, general_limit=3)
        assert [v.transform.name for v in variants.general] == ["full", "middle", "middle"]
        assert variants.general[2].transform.threshold is not None
        assert [v.index for v in variants.general] == [0, 1, 2]
        assert len(variants.brand) == 3

    def test_general_limit_keeps_full_frame(self, label_bytes):
        variants = ImageVariantBuilder().build(label_bytes, Mode.FAST, general_limit=0)
        assert [v.transform.name for v in variants.general] == ["full"]

    def test_variants_indexed_per_zone(self, label_bytes):
        variants = ImageVariantBuilder().build(label_bytes, Mode.THOROUGH)
        for zone in RecognitionZone:
            assert [v.index for v in variants.for_zone(zone)] == list(range(len(variants.for_zone(zone))))
            assert all(v.zone == zone for v in variants.for_zone(zone))

    def test_brand_band_geometry(self, label_bytes):
        variants = ImageVariantBuilder().build(label_bytes, Mode.FAST)
        crop = variants.brand[0].transform.crop
        assert (crop.left, crop.top, crop.width, crop.height) == (120, 0, 560, 180)

    def test_size_band_geometry(self, label_bytes):
        variants = ImageVariantBuilder().build(label_bytes, Mode.FAST)
        crop = variants.size[0].transform.crop
        assert (crop.left, crop.top, crop.width, crop.height) == (360, 330, 440, 270)

    def test_failed_transform_falls_back_to_plain_crop(self, label_bytes, monkeypatch):
        def broken(image):
            raise ValueError("threshold failed")
        monkeypatch.setattr(preprocessing, "otsu_threshold", broken)
        variants = ImageVariantBuilder().build(label_bytes, Mode.THOROUGH)
        assert len(variants.brand) == 3
        assert variants.brand[1].transform.threshold is None
        assert variants.brand[1].image.size == (560, 180)

    def test_primary_image_bytes_is_jpeg(self, label_bytes):
        variants = ImageVariantBuilder().build(label_bytes, Mode.FAST)
        assert variants.primary_image_bytes()[:2] == b"\xff\xd8"

    def test_downscale(self, label_bytes):
        variants = ImageVariantBuilder().build(label_bytes, Mode.FAST)
        small = downscale(variants.brand[0])
        assert small.image.size == (280, 90)
        assert small.transform.scale == 0.5
        assert small.zone == RecognitionZone.BRAND


class TestCropBox:
    """Clamping to image bounds."""

    def test_minimum_size(self):
        box = CropBox.clamped(10, 10, 5, 5, 800, 600)
        assert (box.width, box.height) == (40, 40)

    def test_clamped_inside_image(self):
        box = CropBox.clamped(790, 590, 100, 100, 800, 600)
        assert box.box == (700, 500, 800, 600)

    def test_tiny_image(self):
        box = CropBox.clamped(0, 0, 5, 5, 20, 30)
        assert box.box == (0, 0, 20, 30)
