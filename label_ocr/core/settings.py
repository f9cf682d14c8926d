"""
Runtime configuration for the label OCR pipeline.

Defaults live in the dataclasses below. An optional YAML file
(LABEL_OCR_CONFIG) overrides them section by section, and environment
variables override both:

  LABEL_OCR_ENV                        production | development
  LABEL_OCR_MODE                       fast | thorough
  LABEL_OCR_BUDGET_<MODE>_<ZONE>_MS    per-attempt budget, e.g. LABEL_OCR_BUDGET_FAST_BRAND_MS
  LABEL_OCR_REQUEST_TIMEOUT_<MODE>_MS  whole-request ceiling
  LABEL_OCR_VISION_PROVIDER            cloud | ollama | mock | none
  GOOGLE_VISION_API_KEY, OLLAMA_URL
  TESSDATA_PREFIX, TESSERACT_CMD, LABEL_OCR_LANG
"""

import os
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from .utils import AttemptBudget, Mode, RecognitionZone


@dataclass
class ZoneBudgets:
    """Per-attempt timeouts (ms) for one mode."""
    general_ms: int
    brand_ms: int
    size_ms: int

    def for_zone(self, zone: RecognitionZone) -> int:
        return getattr(self, f"{zone.value}_ms")


@dataclass
class ScoringSettings:
    """Ranker weights and pipeline thresholds. Only relative ordering matters."""
    food_bigram_weight: float = 6.0
    brand_bigram_weight: float = 3.0
    food_unigram_weight: float = 3.0
    brand_unigram_weight: float = 1.0
    letter_weight: float = 0.2
    max_scored_letters: int = 40
    bad_char_penalty: float = 4.0
    digit_ratio_allowance: float = 0.1
    digit_ratio_penalty: float = 10.0
    min_vowel_ratio: float = 0.25
    low_vowel_penalty: float = 4.0
    garbage_tail_penalty: float = 2.0
    phrase_bonus: float = 4.0
    good_enough_score: float = 12.0
    max_candidates: int = 5
    fallback_min_alpha: int = 12
    fallback_min_score: float = 6.0
    brand_suffix_max: int = 4


@dataclass
class EngineSettings:
    lang: str = "eng"
    tessdata_dir: Optional[str] = None
    tesseract_cmd: Optional[str] = None
    dpi: int = 300
    oem: int = 1
    workers: int = 4


@dataclass
class VisionSettings:
    provider: str = "cloud"
    api_key: Optional[str] = None
    endpoint: str = "https://vision.googleapis.com/v1/images:annotate"
    ollama_url: str = "http://localhost:11434"
    ollama_model: str = "llava:7b"
    timeout_seconds: float = 8.0


@dataclass
class Settings:
    environment: str = "development"
    mode: Optional[Mode] = None
    max_edge: int = 1600
    label_band_reread: bool = True
    fast: ZoneBudgets = field(default_factory=lambda: ZoneBudgets(2500, 1200, 1200))
    thorough: ZoneBudgets = field(default_factory=lambda: ZoneBudgets(6000, 2500, 2500))
    request_timeout_fast_ms: int = 12000
    request_timeout_thorough_ms: int = 30000
    scoring: ScoringSettings = field(default_factory=ScoringSettings)
    engine: EngineSettings = field(default_factory=EngineSettings)
    vision: VisionSettings = field(default_factory=VisionSettings)

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    def resolve_mode(self, mode=None) -> Mode:
        """Explicit mode, else configured mode, else fast in production and thorough elsewhere."""
        if mode is not None:
            return Mode.parse(mode)
        if self.mode is not None:
            return self.mode
        return Mode.FAST if self.is_production else Mode.THOROUGH

    def budgets(self, mode: Mode) -> ZoneBudgets:
        return self.fast if mode == Mode.FAST else self.thorough

    def budget(self, zone: RecognitionZone, mode: Mode) -> AttemptBudget:
        return AttemptBudget(zone=zone, mode=mode, timeout_ms=self.budgets(mode).for_zone(zone))

    def request_timeout_ms(self, mode: Mode) -> int:
        return self.request_timeout_fast_ms if mode == Mode.FAST else self.request_timeout_thorough_ms


def _apply(target: Any, overrides: Mapping[str, Any]) -> None:
    """Recursively copy a YAML mapping onto a dataclass instance."""
    known = {f.name for f in fields(target)}
    for key, value in (overrides or {}).items():
        if key not in known:
            raise ValueError(f"Unknown setting '{key}' in {type(target).__name__}")
        current = getattr(target, key)
        if is_dataclass(current) and isinstance(value, Mapping):
            _apply(current, value)
        elif key == "mode":
            setattr(target, key, Mode.parse(value) if value else None)
        else:
            setattr(target, key, value)


def _apply_env(settings: Settings, env: Mapping[str, str]) -> None:
    if env.get("LABEL_OCR_ENV"):
        settings.environment = env["LABEL_OCR_ENV"]
    elif env.get("NODE_ENV"):
        settings.environment = env["NODE_ENV"]
    if env.get("LABEL_OCR_MODE"):
        settings.mode = Mode.parse(env["LABEL_OCR_MODE"])

    for mode in Mode:
        budgets = settings.budgets(mode)
        for zone in RecognitionZone:
            name = f"LABEL_OCR_BUDGET_{mode.name}_{zone.name}_MS"
            if env.get(name):
                setattr(budgets, f"{zone.value}_ms", int(env[name]))
        name = f"LABEL_OCR_REQUEST_TIMEOUT_{mode.name}_MS"
        if env.get(name):
            setattr(settings, f"request_timeout_{mode.value}_ms", int(env[name]))

    if env.get("LABEL_OCR_VISION_PROVIDER"):
        settings.vision.provider = env["LABEL_OCR_VISION_PROVIDER"]
    if env.get("GOOGLE_VISION_API_KEY"):
        settings.vision.api_key = env["GOOGLE_VISION_API_KEY"]
    if env.get("OLLAMA_URL"):
        settings.vision.ollama_url = env["OLLAMA_URL"]
    if env.get("TESSDATA_PREFIX"):
        settings.engine.tessdata_dir = env["TESSDATA_PREFIX"]
    if env.get("TESSERACT_CMD"):
        settings.engine.tesseract_cmd = env["TESSERACT_CMD"]
    if env.get("LABEL_OCR_LANG"):
        settings.engine.lang = env["LABEL_OCR_LANG"]


def load_settings(path: Optional[Path] = None, env: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Build Settings from defaults, an optional YAML file and the environment.

    Args:
        path: YAML file; defaults to $LABEL_OCR_CONFIG when set
        env: Environment mapping (defaults to os.environ)

    Returns:
        Fully resolved Settings
    """
    env = os.environ if env is None else env
    settings = Settings()

    if path is None and env.get("LABEL_OCR_CONFIG"):
        path = Path(env["LABEL_OCR_CONFIG"])
    if path is not None:
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        raw: Dict[str, Any] = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        _apply(settings, raw)

    _apply_env(settings, env)
    return settings
