"""
Per-request orchestration for label OCR.

One request = one engine session:

  bytes -> variants -> General zone -> first ranking
        -> Brand/Size zones in parallel (unless the General read is good enough)
        -> guard passes (label-band re-read) -> vision fallback (thorough only)
        -> final ranked lines + product draft

The whole request runs under a hard ceiling; per-attempt budgets are soft.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from .core.postprocessing import CandidateRanker
from .core.preprocessing import ImageVariantBuilder, UnsupportedImageError, VariantSet, sniff_unsupported_format
from .core.recognition import (
    THOROUGH_GENERAL_VARIANTS,
    EngineSession,
    OcrEngine,
    RecognitionOrchestrator,
    TesseractEngine,
)
from .core.settings import Settings, load_settings
from .core.utils import Candidate, FinalResult, LabelOcrError, Mode, RecognitionZone
from .label_corrector import proper_case
from .label_fields import build_draft
from .lexicon import has_food_keyword
from .vision_fallback import VisionFallbackGate, VisionTextDetector, create_detector

logger = logging.getLogger(__name__)

OCR_PIPELINE_VERSION = "2026-10-label-ocr-v1"


class RequestState(Enum):
    IDLE = "idle"
    BUILDING_VARIANTS = "building_variants"
    RECOGNIZING_GENERAL = "recognizing_general"
    RECOGNIZING_BRAND_SIZE = "recognizing_brand_size"
    SKIPPED_BRAND_SIZE = "skipped_brand_size"
    GUARD_PASSES = "guard_passes"
    VISION_FALLBACK = "vision_fallback"
    SKIPPED_FALLBACK = "skipped_fallback"
    FINALIZING = "finalizing"
    DONE = "done"
    REJECTED_UNSUPPORTED_FORMAT = "rejected_unsupported_format"
    FAILED = "failed"


class RequestTimeoutError(LabelOcrError):
    """The whole request ran past its hard ceiling."""
    code = "ocr_timeout"
    status_code = 504


@dataclass
class RequestTrace:
    """State transitions and their offsets (ms) for one request."""
    started: float = field(default_factory=time.monotonic)
    states: List[RequestState] = field(default_factory=lambda: [RequestState.IDLE])
    timing: Dict[str, float] = field(default_factory=dict)
    abandoned: bool = False
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def enter(self, state: RequestState, freeze: bool = False) -> None:
        with self._lock:
            if self.abandoned:
                return
            self.states.append(state)
            self.timing[state.value] = round((time.monotonic() - self.started) * 1000.0, 1)
            self.abandoned = freeze
        logger.debug("[OCR] -> %s", state.value)

    def abandon(self) -> None:
        """Record FAILED and freeze the trace; the request thread may still be running."""
        self.enter(RequestState.FAILED, freeze=True)

    @property
    def state(self) -> RequestState:
        return self.states[-1]


class RequestCoordinator:
    """
    Runs one label image through the pipeline.

    Args:
        settings: Resolved Settings (defaults + YAML + environment)
        engine_factory: Builds a fresh OcrEngine per request
        vision_detector: Vision backend; defaults to the configured provider
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        engine_factory: Optional[Callable[[], OcrEngine]] = None,
        vision_detector: Optional[VisionTextDetector] = None
    ):
        self.settings = settings or Settings()
        self.engine_factory = engine_factory or (lambda: TesseractEngine(self.settings.engine))
        self.ranker = CandidateRanker(self.settings.scoring)
        if vision_detector is None:
            vision_detector = create_detector(self.settings.vision)
        self.vision_gate = VisionFallbackGate(vision_detector, self.ranker)

    def process(self, image_bytes: bytes, mode=None) -> FinalResult:
        """
        Recognize one label under the request's hard ceiling.

        Raises:
            UnsupportedImageError: HEIC/RAW-style container or undecodable bytes
            RequestTimeoutError: the hard ceiling was hit
            EngineInitError: the engine could not start
        """
        mode = self.settings.resolve_mode(mode)
        ceiling = self.settings.request_timeout_ms(mode) / 1000.0
        trace = RequestTrace()
        sessions: List[EngineSession] = []

        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="ocr-request")
        try:
            future = executor.submit(self._run, image_bytes, mode, trace, sessions)
            try:
                return future.result(timeout=ceiling)
            except FuturesTimeout:
                trace.abandon()
                for session in sessions:
                    session.release()
                logger.error("[OCR] Request exceeded %.1fs ceiling (%s mode)", ceiling, mode.value)
                raise RequestTimeoutError(f"OCR timed out after {ceiling:.1f}s")
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    # -------------------------------------------------------------------------
    # Request body
    # -------------------------------------------------------------------------

    def _run(
        self,
        image_bytes: bytes,
        mode: Mode,
        trace: RequestTrace,
        sessions: List[EngineSession]
    ) -> FinalResult:
        trace.enter(RequestState.BUILDING_VARIANTS)
        image_format = sniff_unsupported_format(image_bytes)
        if image_format:
            trace.enter(RequestState.REJECTED_UNSUPPORTED_FORMAT)
            raise UnsupportedImageError(f"Unsupported image type: {image_format}", image_format)

        try:
            with EngineSession(self.engine_factory(), self.settings.engine.workers) as session:
                sessions.append(session)
                result = self._recognize(session, image_bytes, mode, trace)
        except UnsupportedImageError:
            trace.enter(RequestState.REJECTED_UNSUPPORTED_FORMAT)
            raise
        except Exception:
            trace.enter(RequestState.FAILED)
            raise

        trace.enter(RequestState.DONE)
        result.states = [s.value for s in trace.states]
        result.timing = dict(trace.timing)
        return result

    def _recognize(
        self,
        session: EngineSession,
        image_bytes: bytes,
        mode: Mode,
        trace: RequestTrace
    ) -> FinalResult:
        scoring = self.settings.scoring
        general_timeout = self.settings.budget(RecognitionZone.GENERAL, mode).seconds
        builder = ImageVariantBuilder(
            max_edge=self.settings.max_edge,
            orientation_probe=lambda image: session.detect_orientation(image, timeout=general_timeout),
        )
        variants = builder.build(image_bytes, mode, general_limit=THOROUGH_GENERAL_VARIANTS)
        orchestrator = RecognitionOrchestrator(session, self.settings, self.ranker)

        trace.enter(RequestState.RECOGNIZING_GENERAL)
        ranked = self.ranker.rank(orchestrator.recognize_general(variants, mode))

        brand_text = size_text = ""
        if ranked and ranked[0].score > scoring.good_enough_score:
            logger.info("[OCR] Early exit on '%s' (%.1f)", ranked[0].text, ranked[0].score)
            trace.enter(RequestState.SKIPPED_BRAND_SIZE)
        else:
            self._ensure_live(session)
            trace.enter(RequestState.RECOGNIZING_BRAND_SIZE)
            brand_text, size_text = self._recognize_brand_size(orchestrator, variants, mode)
            brand_candidates = self.ranker.candidates_from_text(brand_text, "brand")
            ranked = self.ranker.rank(ranked + brand_candidates, brand_text)

        trace.enter(RequestState.GUARD_PASSES)
        if self.settings.label_band_reread and not any(has_food_keyword(c.text) for c in ranked):
            self._ensure_live(session)
            band = orchestrator.reread_label_band(variants, mode)
            if band:
                logger.debug("[OCR] Label band added %d lines", len(band))
                ranked = self.ranker.rank(ranked + band, brand_text)

        used_vision = False
        if self.vision_gate.should_trigger(ranked, mode):
            self._ensure_live(session)
            trace.enter(RequestState.VISION_FALLBACK)
            ranked, used_vision = self.vision_gate.apply(ranked, variants.primary_image_bytes, brand_text)
        else:
            trace.enter(RequestState.SKIPPED_FALLBACK)

        trace.enter(RequestState.FINALIZING)
        return self._finalize(ranked, orchestrator, brand_text, size_text, mode, used_vision)

    @staticmethod
    def _ensure_live(session: EngineSession) -> None:
        # the ceiling fired and the caller already has its 504
        if session.released:
            raise RequestTimeoutError("request abandoned")

    @staticmethod
    def _recognize_brand_size(
        orchestrator: RecognitionOrchestrator,
        variants: VariantSet,
        mode: Mode
    ) -> Tuple[str, str]:
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="ocr-zone") as pool:
            brand = pool.submit(orchestrator.recognize_brand, variants, mode)
            size = pool.submit(orchestrator.recognize_size, variants, mode)
            return brand.result(), size.result()

    def _finalize(
        self,
        ranked: List[Candidate],
        orchestrator: RecognitionOrchestrator,
        brand_text: str,
        size_text: str,
        mode: Mode,
        used_vision: bool
    ) -> FinalResult:
        top = ranked[:self.settings.scoring.max_candidates]
        lines = [proper_case(c.text) for c in top]
        if not lines and orchestrator.best_effort_line:
            logger.info("[OCR] No candidates, using best-effort line '%s'", orchestrator.best_effort_line)
            lines = [proper_case(orchestrator.best_effort_line)]
        text = "\n".join(lines)
        raw_text = orchestrator.general_raw_text

        return FinalResult(
            text=text,
            candidates=top,
            raw_text=raw_text,
            brand_text=brand_text,
            size_text=size_text,
            draft=build_draft(text, brand_text or raw_text, size_text or raw_text) if text else None,
            mode=mode,
            used_vision=used_vision,
        )


def handle_request(
    image_bytes: bytes,
    mode=None,
    settings: Optional[Settings] = None,
    coordinator: Optional[RequestCoordinator] = None
) -> Tuple[int, Dict[str, Any]]:
    """
    Map one upload to an (HTTP status, JSON payload) pair.

    Success:  200 {"ok": true, "text", "result": {"rawText", "lines", "engine"}, "draft", "version"}
    Failure:  {"ok": false, "error", "code"} with 400/415/504/500, or 200 when no text was found
    """
    if coordinator is None:
        coordinator = RequestCoordinator(settings or load_settings())
    settings = coordinator.settings

    if not image_bytes:
        return 400, {"ok": False, "error": "No file provided", "code": "no_file"}

    try:
        result = coordinator.process(image_bytes, mode)
    except LabelOcrError as e:
        logger.error("[OCR] Request failed (%s): %s", e.code, e)
        message = str(e)
        if e.status_code >= 500 and e.code == "ocr_failed" and settings.is_production:
            message = "OCR failed"
        return e.status_code, {"ok": False, "error": message, "code": e.code}
    except Exception as e:
        logger.exception("[OCR] route error")
        message = "OCR failed" if settings.is_production else str(e)
        return 500, {"ok": False, "error": message, "code": LabelOcrError.code}

    if not result.text:
        return 200, {"ok": False, "error": "No text detected in image", "code": "no_text"}

    return 200, {
        "ok": True,
        "text": result.text,
        "result": {
            "rawText": result.raw_text,
            "lines": result.lines,
            "engine": "vision" if result.used_vision else "tesseract",
        },
        "draft": result.draft.to_dict() if result.draft else None,
        "version": OCR_PIPELINE_VERSION,
    }
