"""
Pytest configuration and shared fixtures for Label OCR tests.

This module provides:
- FakeEngine: scripted OcrEngine that counts calls per zone (no Tesseract needed)
- Image byte fixtures (JPEG label stand-ins, HEIC/RAW signatures, junk bytes)
- Settings and coordinator factories

Usage:
    pytest label_ocr/tests/ -v
    pytest label_ocr/tests/test_pipeline.py -v
"""

import io
import sys
import threading
import time
from collections import Counter
from pathlib import Path
from typing import Dict, List, Optional, Union

import pytest
from PIL import Image, ImageDraw

# Add repository root to path for imports
PROJECT_ROOT = Path(__file__).parent.parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from label_ocr.core.recognition import EngineConfig, OcrEngine  # noqa: E402
from label_ocr.core.settings import Settings, VisionSettings, ZoneBudgets  # noqa: E402
from label_ocr.pipeline import RequestCoordinator  # noqa: E402


# =============================================================================
# Fake Engine
# =============================================================================

Scripted = Union[str, Exception]


class FakeEngine(OcrEngine):
    """
    Scripted engine keyed by zone prefix of the config name
    ("general", "brand", "size", "label").

    Each zone's list is consumed in order; the last entry repeats. Missing
    zones return "". Exceptions in the script are raised.
    """

    name = "fake"

    def __init__(
        self,
        script: Optional[Dict[str, List[Scripted]]] = None,
        delay: float = 0.0,
        orientation: int = 0
    ):
        self.script = {zone: list(items) for zone, items in (script or {}).items()}
        self.delay = delay
        self.orientation = orientation
        self.calls = Counter()
        self.configs: List[EngineConfig] = []
        self.initialized = 0
        self.closed = 0
        self._lock = threading.Lock()

    def initialize(self) -> None:
        self.initialized += 1

    def close(self) -> None:
        self.closed += 1

    def recognize(self, image, config):
        zone = config.name.split("-")[0]
        with self._lock:
            self.calls[zone] += 1
            self.configs.append(config)
            items = self.script.get(zone) or [""]
            item = items.pop(0) if len(items) > 1 else items[0]
        if self.delay:
            time.sleep(self.delay)
        if isinstance(item, Exception):
            raise item
        return item, ()

    def detect_orientation(self, image) -> int:
        return self.orientation

    @property
    def total_calls(self) -> int:
        return sum(self.calls.values())


class EngineFactory:
    """Counts how many engines a coordinator asked for."""

    def __init__(self, engine: OcrEngine):
        self.engine = engine
        self.calls = 0

    def __call__(self) -> OcrEngine:
        self.calls += 1
        return self.engine


# =============================================================================
# Image Fixtures
# =============================================================================

def make_image_bytes(width: int = 800, height: int = 600, fmt: str = "JPEG") -> bytes:
    """A label-like image: light background, dark text-ish bars."""
    image = Image.new("RGB", (width, height), (235, 230, 220))
    draw = ImageDraw.Draw(image)
    draw.rectangle([width * 0.2, height * 0.05, width * 0.8, height * 0.2], fill=(40, 40, 40))
    draw.rectangle([width * 0.1, height * 0.4, width * 0.9, height * 0.55], fill=(20, 60, 20))
    draw.rectangle([width * 0.6, height * 0.8, width * 0.95, height * 0.9], fill=(0, 0, 0))
    buf = io.BytesIO()
    image.save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def label_bytes() -> bytes:
    return make_image_bytes()


@pytest.fixture
def png_bytes() -> bytes:
    return make_image_bytes(fmt="PNG")


@pytest.fixture
def large_bytes() -> bytes:
    return make_image_bytes(3200, 1000)


@pytest.fixture
def heic_bytes() -> bytes:
    return b"\x00\x00\x00\x18ftypheic\x00\x00\x00\x00mif1heic" + b"\x00" * 64


@pytest.fixture
def junk_bytes() -> bytes:
    return b"definitely not an image" * 10


# =============================================================================
# Settings / Coordinator Fixtures
# =============================================================================

@pytest.fixture
def settings() -> Settings:
    """Development settings with vision disabled."""
    return Settings(environment="development", vision=VisionSettings(provider="none"))


@pytest.fixture
def tight_settings() -> Settings:
    """Tiny per-attempt budgets for timeout tests."""
    return Settings(
        environment="development",
        fast=ZoneBudgets(50, 50, 50),
        thorough=ZoneBudgets(50, 50, 50),
        vision=VisionSettings(provider="none"),
    )


@pytest.fixture
def make_coordinator():
    """Build a coordinator around a FakeEngine; returns (coordinator, factory)."""
    def _make(engine: FakeEngine, settings: Settings, vision=None):
        factory = EngineFactory(engine)
        return RequestCoordinator(settings, engine_factory=factory, vision_detector=vision), factory
    return _make
