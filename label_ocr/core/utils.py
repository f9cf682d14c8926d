"""
Shared data classes for the label OCR pipeline.

Everything here is created and discarded within one request; nothing is
persisted or shared across requests.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from PIL import Image


# =============================================================================
# Errors
# =============================================================================

class LabelOcrError(Exception):
    """Base class for failures surfaced to the caller."""
    code = "ocr_failed"
    status_code = 500


# =============================================================================
# Enums
# =============================================================================

class RecognitionZone(Enum):
    """Logical label region; selects whitelist, page segmentation and budget."""
    GENERAL = "general"
    BRAND = "brand"
    SIZE = "size"


class Mode(Enum):
    """Latency/exhaustiveness trade-off selected per deployment."""
    FAST = "fast"
    THOROUGH = "thorough"

    @classmethod
    def parse(cls, value) -> "Mode":
        if isinstance(value, Mode):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown mode '{value}' (expected 'fast' or 'thorough')")


# =============================================================================
# Image Variants
# =============================================================================

MIN_CROP_SIZE = 40


@dataclass(frozen=True)
class CropBox:
    """Crop rectangle in source-image pixels."""
    left: int
    top: int
    width: int
    height: int

    @classmethod
    def clamped(
        cls,
        left: int,
        top: int,
        width: int,
        height: int,
        image_width: int,
        image_height: int,
        min_size: int = MIN_CROP_SIZE
    ) -> "CropBox":
        """Build a box clamped to the image, at least min_size square where the image allows."""
        width = min(max(int(width), min_size), image_width)
        height = min(max(int(height), min_size), image_height)
        left = min(max(int(left), 0), image_width - width)
        top = min(max(int(top), 0), image_height - height)
        return cls(left, top, width, height)

    @property
    def box(self) -> Tuple[int, int, int, int]:
        """(left, upper, right, lower) as PIL expects."""
        return (self.left, self.top, self.left + self.width, self.top + self.height)


@dataclass(frozen=True)
class VariantTransform:
    """What was done to produce a variant."""
    name: str
    crop: CropBox
    grayscale: bool = False
    threshold: Optional[int] = None
    inverted: bool = False
    sharpen: float = 0.0
    scale: float = 1.0

    def describe(self) -> str:
        parts = [self.name, f"crop={self.crop.left},{self.crop.top},{self.crop.width}x{self.crop.height}"]
        if self.grayscale:
            parts.append("gray")
        if self.threshold is not None:
            parts.append(f"thresh={self.threshold}")
        if self.inverted:
            parts.append("inv")
        if self.sharpen:
            parts.append(f"sharpen={self.sharpen:g}")
        if self.scale != 1.0:
            parts.append(f"scale={self.scale:g}")
        return " ".join(parts)


@dataclass(frozen=True)
class ImageVariant:
    """One preprocessed crop submitted to the OCR engine."""
    zone: RecognitionZone
    transform: VariantTransform
    image: Image.Image = field(compare=False, repr=False)
    index: int = 0


@dataclass(frozen=True)
class AttemptBudget:
    """Per-attempt timeout for one zone in one mode."""
    zone: RecognitionZone
    mode: Mode
    timeout_ms: int

    @property
    def seconds(self) -> float:
        return self.timeout_ms / 1000.0


# =============================================================================
# Recognition Results
# =============================================================================

@dataclass(frozen=True)
class WordBox:
    """A recognized word with its bounding box."""
    text: str
    left: int
    top: int
    width: int
    height: int
    confidence: float


@dataclass(frozen=True)
class RawRecognitionResult:
    """Engine output for one attempt."""
    zone: RecognitionZone
    variant_index: int
    text: str
    words: Tuple[WordBox, ...] = ()
    orientation: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.text or not self.text.strip()

    @property
    def mean_confidence(self) -> float:
        confs = [w.confidence for w in self.words if w.confidence >= 0]
        return sum(confs) / len(confs) if confs else 0.0


@dataclass(frozen=True)
class Candidate:
    """A normalized single-line result eligible for ranking."""
    text: str
    score: float
    source: str

    @property
    def key(self) -> str:
        return self.text.lower()


# =============================================================================
# Final Output
# =============================================================================

@dataclass
class ProductDraft:
    """Structured guess at the product, for downstream catalog matching."""
    brand: str = ""
    name: str = ""
    size: str = ""
    category: str = ""
    labels: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class FinalResult:
    """Ranked outcome of one label request."""
    text: str
    candidates: List[Candidate] = field(default_factory=list)
    raw_text: str = ""
    brand_text: str = ""
    size_text: str = ""
    draft: Optional[ProductDraft] = None
    mode: Mode = Mode.FAST
    used_vision: bool = False
    states: List[str] = field(default_factory=list)
    timing: Dict[str, float] = field(default_factory=dict)

    @property
    def lines(self) -> List[str]:
        return [line for line in self.text.split("\n") if line]

    @property
    def best(self) -> str:
        lines = self.lines
        return lines[0] if lines else ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "lines": self.lines,
            "candidates": [
                {"text": c.text, "score": c.score, "source": c.source}
                for c in self.candidates
            ],
            "raw_text": self.raw_text,
            "brand_text": self.brand_text,
            "size_text": self.size_text,
            "draft": self.draft.to_dict() if self.draft else None,
            "mode": self.mode.value,
            "used_vision": self.used_vision,
            "states": list(self.states),
            "timing": dict(self.timing),
        }
