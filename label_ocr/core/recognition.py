"""
OCR recognition for label OCR.

Contains the engine contract, the Tesseract engine, the per-request engine
session (worker pool + soft timeouts) and the per-zone attempt orchestration.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Sequence, Tuple

import pytesseract
from PIL import Image

from ..label_corrector import normalize_line, split_lines
from ..lexicon import is_boilerplate, is_size_line
from .postprocessing import CandidateRanker
from .preprocessing import VariantSet, downscale
from .settings import EngineSettings, Settings
from .utils import (
    Candidate,
    ImageVariant,
    LabelOcrError,
    Mode,
    RawRecognitionResult,
    RecognitionZone,
    WordBox,
)

logger = logging.getLogger(__name__)


class EngineInitError(LabelOcrError):
    """The OCR engine could not be started for this request."""
    code = "ocr_failed"
    status_code = 500


# =============================================================================
# Engine Configs
# =============================================================================

SIZE_WHITELIST = "0123456789.,()/%OZozLBlbSsFLflGgMmKkNETWnetw"


@dataclass(frozen=True)
class EngineConfig:
    """Page segmentation, resolution, character whitelist and engine mode for one read."""
    name: str
    psm: int
    dpi: int = 300
    whitelist: Optional[str] = None
    oem: int = 1

    def tesseract_args(self) -> str:
        args = [f"--oem {self.oem}", f"--psm {self.psm}", f"--dpi {self.dpi}"]
        if self.whitelist:
            args.append(f"-c tessedit_char_whitelist={self.whitelist}")
        return " ".join(args)


GENERAL_CONFIGS = (
    EngineConfig("general-block", psm=6),
    EngineConfig("general-sparse", psm=11),
)
BRAND_LINE_CONFIG = EngineConfig("brand-line", psm=7)
BRAND_SPARSE_CONFIG = EngineConfig("brand-sparse", psm=11)
SIZE_CONFIGS = (
    EngineConfig("size-block", psm=6, whitelist=SIZE_WHITELIST),
    EngineConfig("size-line", psm=7, whitelist=SIZE_WHITELIST),
)
LABEL_BAND_CONFIG = EngineConfig("label-block", psm=6)

THOROUGH_GENERAL_VARIANTS = 3
THOROUGH_SIZE_VARIANTS = 2
SIZE_DISTINCT_LIMIT = 2


# =============================================================================
# Engines
# =============================================================================

class OcrEngine(ABC):
    """Opaque recognizer: image + config in, text + word boxes out. No timeout of its own."""

    name = "engine"

    def initialize(self) -> None:
        """Prepare the engine for a request. Raise EngineInitError on failure."""

    @abstractmethod
    def recognize(self, image: Image.Image, config: EngineConfig) -> Tuple[str, Sequence[WordBox]]:
        """Return newline-separated text and the recognized words."""

    def detect_orientation(self, image: Image.Image) -> int:
        """Clockwise rotation (degrees) needed to make the text upright."""
        return 0

    def close(self) -> None:
        pass


class TesseractEngine(OcrEngine):
    """Tesseract through pytesseract; one subprocess per read."""

    name = "tesseract"

    def __init__(self, settings: Optional[EngineSettings] = None):
        self.settings = settings or EngineSettings()
        self.version = None

    def initialize(self) -> None:
        if self.settings.tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = self.settings.tesseract_cmd
        try:
            self.version = pytesseract.get_tesseract_version()
        except (pytesseract.TesseractNotFoundError, OSError) as e:
            raise EngineInitError(f"Tesseract not available: {e}") from e
        logger.info("[OCR] Initialized Tesseract %s (lang=%s)", self.version, self.settings.lang)

    def _config_string(self, config: EngineConfig) -> str:
        args = config.tesseract_args()
        if self.settings.tessdata_dir:
            args = f'--tessdata-dir "{self.settings.tessdata_dir}" {args}'
        return args

    def recognize(self, image: Image.Image, config: EngineConfig) -> Tuple[str, Sequence[WordBox]]:
        data = pytesseract.image_to_data(
            image,
            lang=self.settings.lang,
            config=self._config_string(config),
            output_type=pytesseract.Output.DICT,
        )

        # Group words back into lines by (block, paragraph, line)
        lines: Dict[Tuple[int, int, int], List[str]] = {}
        words = []
        for i, text in enumerate(data["text"]):
            text = (text or "").strip()
            if not text:
                continue
            conf = float(data["conf"][i])
            key = (data["block_num"][i], data["par_num"][i], data["line_num"][i])
            lines.setdefault(key, []).append(text)
            words.append(WordBox(
                text=text,
                left=int(data["left"][i]),
                top=int(data["top"][i]),
                width=int(data["width"][i]),
                height=int(data["height"][i]),
                confidence=conf / 100.0 if conf >= 0 else -1.0,
            ))
        return "\n".join(" ".join(ws) for ws in lines.values()), words

    def detect_orientation(self, image: Image.Image) -> int:
        osd = pytesseract.image_to_osd(image, output_type=pytesseract.Output.DICT)
        return int(osd.get("rotate", 0))


# =============================================================================
# Session
# =============================================================================

class EngineSession:
    """
    One engine plus its worker pool, scoped to a single request.

    Attempts run on the pool and are abandoned (not killed) when their budget
    runs out. Use as a context manager; release happens exactly once.
    """

    def __init__(self, engine: OcrEngine, workers: int = 4):
        self.engine = engine
        self.workers = workers
        self._executor: Optional[ThreadPoolExecutor] = None
        self._lock = threading.Lock()
        self._released = False
        self.attempts = 0

    def __enter__(self) -> "EngineSession":
        self.engine.initialize()
        self._executor = ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="ocr-attempt")
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.release()
        return False

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> bool:
        """Shut the pool down without waiting on abandoned attempts. False if already released."""
        with self._lock:
            if self._released:
                return False
            self._released = True
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
        try:
            self.engine.close()
        except Exception as e:
            logger.warning("[OCR] Engine close failed: %s", e)
        logger.debug("[OCR] Session released after %d attempts", self.attempts)
        return True

    def _submit(self, fn, *args):
        if self._released or self._executor is None:
            return None
        try:
            return self._executor.submit(fn, *args)
        except RuntimeError:
            # pool already shut down by a concurrent release
            return None

    def recognize(
        self,
        variant: ImageVariant,
        config: EngineConfig,
        timeout: float
    ) -> Optional[RawRecognitionResult]:
        """
        Run one soft-timed attempt.

        Returns:
            RawRecognitionResult, or None on timeout, engine error or released session
        """
        with self._lock:
            self.attempts += 1
        label = f"{variant.zone.value}#{variant.index}/{config.name}"
        started = time.monotonic()
        future = self._submit(self.engine.recognize, variant.image, config)
        if future is None:
            return None
        try:
            text, words = future.result(timeout=timeout)
        except FuturesTimeout:
            future.cancel()
            logger.debug("[OCR] %s timed out after %.2fs", label, timeout)
            return None
        except Exception as e:
            logger.warning("[OCR] %s failed: %s", label, e)
            return None

        logger.debug("[OCR] %s -> %d chars in %.2fs", label, len(text or ""), time.monotonic() - started)
        return RawRecognitionResult(
            zone=variant.zone,
            variant_index=variant.index,
            text=text or "",
            words=tuple(words or ()),
        )

    def detect_orientation(self, image: Image.Image, timeout: Optional[float] = None) -> int:
        """Orientation probe; raises on failure or timeout (callers treat it as best-effort)."""
        future = self._submit(self.engine.detect_orientation, image)
        if future is None:
            raise RuntimeError("engine session released")
        return future.result(timeout=timeout)


# =============================================================================
# Orchestrator
# =============================================================================

@dataclass(frozen=True)
class AttemptStrategy:
    """One planned read: which variant, with which engine config."""
    name: str
    variant: ImageVariant
    config: EngineConfig


class RecognitionOrchestrator:
    """Drives the engine session across variants, zone by zone."""

    def __init__(
        self,
        session: EngineSession,
        settings: Optional[Settings] = None,
        ranker: Optional[CandidateRanker] = None
    ):
        self.session = session
        self.settings = settings or Settings()
        self.ranker = ranker or CandidateRanker(self.settings.scoring)
        self.general_raw_text = ""
        self.best_effort_line = ""

    def _config(self, base: EngineConfig) -> EngineConfig:
        engine = self.settings.engine
        return replace(base, dpi=engine.dpi, oem=engine.oem)

    def _timeout(self, zone: RecognitionZone, mode: Mode) -> float:
        return self.settings.budget(zone, mode).seconds

    def _strategies(self, variants: Sequence[ImageVariant], configs: Sequence[EngineConfig]) -> List[AttemptStrategy]:
        return [
            AttemptStrategy(f"{v.transform.name}/{c.name}", v, self._config(c))
            for v in variants for c in configs
        ]

    # -------------------------------------------------------------------------
    # Drivers
    # -------------------------------------------------------------------------

    def attempt(self, strategy: AttemptStrategy, timeout: float) -> Optional[RawRecognitionResult]:
        result = self.session.recognize(strategy.variant, strategy.config, timeout)
        if result is None or result.is_empty:
            return None
        return result

    def first_success(self, strategies: Sequence[AttemptStrategy], timeout: float) -> Optional[RawRecognitionResult]:
        """Run strategies in order; the first non-empty result wins."""
        for strategy in strategies:
            result = self.attempt(strategy, timeout)
            if result is not None:
                logger.debug("[OCR] %s succeeded via %s", strategy.variant.zone.value, strategy.name)
                return result
        return None

    def collect_distinct(
        self,
        strategies: Sequence[AttemptStrategy],
        timeout: float,
        limit: int
    ) -> List[RawRecognitionResult]:
        """Run strategies in order until `limit` results with distinct text are in hand."""
        results = []
        seen = set()
        for strategy in strategies:
            result = self.attempt(strategy, timeout)
            if result is None:
                continue
            key = " ".join(result.text.lower().split())
            if key in seen:
                continue
            seen.add(key)
            results.append(result)
            if len(results) >= limit:
                break
        return results

    # -------------------------------------------------------------------------
    # Zones
    # -------------------------------------------------------------------------

    def _remember_best_effort(self, raw_text: str) -> None:
        if self.best_effort_line:
            return
        lines = [normalize_line(line) for line in split_lines(raw_text)]
        lines = [line for line in lines if line]
        lines = [l for l in lines if not is_boilerplate(l) and not is_size_line(l)] or lines
        if lines:
            # most letters wins; first on ties
            self.best_effort_line = max(lines, key=lambda l: sum(c.isalpha() for c in l))

    def recognize_general(self, variants: VariantSet, mode: Mode) -> List[Candidate]:
        """
        Read the General zone.

        FAST: first non-empty of two configs on the first variant.
        THOROUGH: up to three variants x two configs, all accumulated.

        Returns:
            Every distinct candidate; the request truncates after the final rank
        """
        timeout = self._timeout(RecognitionZone.GENERAL, mode)
        if mode == Mode.FAST:
            result = self.first_success(self._strategies(variants.general[:1], GENERAL_CONFIGS), timeout)
            results = [result] if result is not None else []
        else:
            strategies = self._strategies(variants.general[:THOROUGH_GENERAL_VARIANTS], GENERAL_CONFIGS)
            results = self.collect_distinct(strategies, timeout, limit=len(strategies))

        candidates = []
        for result in results:
            self._remember_best_effort(result.text)
            candidates.extend(self.ranker.candidates_from_text(result.text, "general"))
        self.general_raw_text = "\n".join(r.text for r in results)

        ranked = self.ranker.dedupe(candidates)
        logger.info("[OCR] General: %d reads, %d candidates", len(results), len(ranked))
        return ranked

    def recognize_brand(self, variants: VariantSet, mode: Mode) -> str:
        """Plain, thresholded, inverted, then (only if all fail) a down-scaled sparse read."""
        if not variants.brand:
            return ""
        line = self._config(BRAND_LINE_CONFIG)
        strategies = [AttemptStrategy(f"{v.transform.describe()}/line", v, line) for v in variants.brand]
        strategies.append(AttemptStrategy("downscaled/sparse", downscale(variants.brand[0]),
                                          self._config(BRAND_SPARSE_CONFIG)))

        result = self.first_success(strategies, self._timeout(RecognitionZone.BRAND, mode))
        if result is None:
            return ""
        brand = normalize_line(" ".join(normalize_line(l) for l in split_lines(result.text)))
        logger.info("[OCR] Brand: '%s'", brand)
        return brand

    def recognize_size(self, variants: VariantSet, mode: Mode) -> str:
        """FAST: one attempt. THOROUGH: up to 2 variants x 2 configs, stop at two distinct reads."""
        if not variants.size:
            return ""
        timeout = self._timeout(RecognitionZone.SIZE, mode)
        if mode == Mode.FAST:
            result = self.attempt(self._strategies(variants.size[:1], SIZE_CONFIGS[:1])[0], timeout)
            results = [result] if result is not None else []
        else:
            strategies = self._strategies(variants.size[:THOROUGH_SIZE_VARIANTS], SIZE_CONFIGS)
            results = self.collect_distinct(strategies, timeout, limit=SIZE_DISTINCT_LIMIT)

        lines = [normalize_line(line) for r in results for line in split_lines(r.text)]
        size = " ".join(line for line in lines if line)
        logger.info("[OCR] Size: '%s'", size)
        return size

    def reread_label_band(self, variants: VariantSet, mode: Mode) -> List[Candidate]:
        """One General-config read over the middle label band."""
        if variants.label_band is None:
            return []
        strategy = AttemptStrategy("label-band", variants.label_band, self._config(LABEL_BAND_CONFIG))
        result = self.attempt(strategy, self._timeout(RecognitionZone.GENERAL, mode))
        if result is None:
            return []
        return self.ranker.candidates_from_text(result.text, "label_band")
