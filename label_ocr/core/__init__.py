"""
Core module for Label OCR.

This package contains modular components for label recognition:
- utils: Data classes, zones, modes and the error base class
- settings: Dataclass settings tree loaded from YAML and the environment
- preprocessing: Image loading and per-zone variant generation
- recognition: OCR engine wrappers, engine session and zone orchestration
- postprocessing: Candidate scoring and ranking guard passes
"""

# Data classes
from .utils import (
    AttemptBudget,
    Candidate,
    CropBox,
    FinalResult,
    ImageVariant,
    LabelOcrError,
    Mode,
    ProductDraft,
    RawRecognitionResult,
    RecognitionZone,
    VariantTransform,
    WordBox,
)

# Settings
from .settings import Settings, ScoringSettings, load_settings

# Preprocessing
from .preprocessing import ImageVariantBuilder, UnsupportedImageError, VariantSet

# Recognition
from .recognition import (
    EngineConfig,
    EngineInitError,
    EngineSession,
    OcrEngine,
    RecognitionOrchestrator,
    TesseractEngine,
)

# Postprocessing
from .postprocessing import CandidateRanker


__all__ = [
    # Data classes
    "AttemptBudget",
    "Candidate",
    "CropBox",
    "FinalResult",
    "ImageVariant",
    "LabelOcrError",
    "Mode",
    "ProductDraft",
    "RawRecognitionResult",
    "RecognitionZone",
    "VariantTransform",
    "WordBox",
    # Settings
    "Settings",
    "ScoringSettings",
    "load_settings",
    # Preprocessing
    "ImageVariantBuilder",
    "UnsupportedImageError",
    "VariantSet",
    # Recognition
    "EngineConfig",
    "EngineInitError",
    "EngineSession",
    "OcrEngine",
    "RecognitionOrchestrator",
    "TesseractEngine",
    # Postprocessing
    "CandidateRanker",
]
