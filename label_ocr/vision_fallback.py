"""
Cloud OCR backstop for low-confidence label reads.

When local recognition produced nothing food-like, the primary General-zone
image is sent to a vision text-detection service and its lines are merged
ahead of the local candidates. The service is unreliable by assumption:
any failure or empty answer leaves the local candidates unchanged.

Backends:
- CloudVisionDetector: Google Cloud Vision REST (TEXT_DETECTION)
- OllamaVisionDetector: local vision LLM through Ollama
- MockVisionDetector: canned answer for tests and demos
"""

import base64
import logging
import re
from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Sequence, Tuple, Union

import requests

from .core.postprocessing import CandidateRanker
from .core.settings import ScoringSettings, VisionSettings
from .core.utils import Candidate, LabelOcrError, Mode
from .lexicon import has_food_keyword

logger = logging.getLogger(__name__)


class VisionServiceError(LabelOcrError):
    """The vision service answered with an error. Never surfaced to callers."""
    code = "vision_failed"
    status_code = 502


class VisionTextDetector(ABC):
    """Image bytes in, full detected text out."""

    name = "vision"

    @abstractmethod
    def detect_text(self, image_bytes: bytes) -> str:
        pass


class CloudVisionDetector(VisionTextDetector):
    """Google Cloud Vision `images:annotate` with TEXT_DETECTION."""

    name = "cloud"

    def __init__(
        self,
        api_key: str,
        endpoint: str = "https://vision.googleapis.com/v1/images:annotate",
        timeout: float = 8.0,
        session: Optional[requests.Session] = None
    ):
        self.api_key = api_key
        self.endpoint = endpoint
        self.timeout = timeout
        self.session = session or requests.Session()

    def detect_text(self, image_bytes: bytes) -> str:
        body = {
            "requests": [{
                "image": {"content": base64.b64encode(image_bytes).decode("ascii")},
                "features": [{"type": "TEXT_DETECTION"}],
            }]
        }
        response = self.session.post(
            self.endpoint,
            params={"key": self.api_key},
            json=body,
            timeout=self.timeout,
        )
        response.raise_for_status()

        payload = response.json()
        if not isinstance(payload, dict):
            raise VisionServiceError(f"Unexpected Vision API response: {type(payload).__name__}")
        responses = payload.get("responses") or [{}]
        first = responses[0] if isinstance(responses[0], dict) else {}
        if first.get("error"):
            raise VisionServiceError(first["error"].get("message", "Vision API error"))
        return ((first.get("fullTextAnnotation") or {}).get("text") or "").strip()


class OllamaVisionDetector(VisionTextDetector):
    """Local vision LLM (llava:7b by default) asked to transcribe the label."""

    name = "ollama"

    PROMPT = (
        "Read the printed text on this grocery product label. "
        "Reply with the text only, one line of the label per line."
    )

    def __init__(
        self,
        model: str = "llava:7b",
        base_url: str = "http://localhost:11434",
        timeout: float = 60.0
    ):
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def detect_text(self, image_bytes: bytes) -> str:
        response = requests.post(
            f"{self.base_url}/api/generate",
            json={
                "model": self.model,
                "prompt": self.PROMPT,
                "images": [base64.b64encode(image_bytes).decode("ascii")],
                "stream": False,
                "options": {"temperature": 0.1, "num_predict": 200},
            },
            timeout=self.timeout,
        )
        response.raise_for_status()
        return self._extract_text(response.json().get("response", ""))

    @staticmethod
    def _extract_text(raw_response: str) -> str:
        """Drop code fences and a leading "The label reads:" style preamble."""
        text = re.sub(r"```[a-z]*", "", raw_response or "").strip()
        text = re.sub(r"^(?:the\s+)?(?:label|text)\s+(?:reads|says)\s*:\s*", "", text, flags=re.I)
        return text.strip().strip('"\'`')


class MockVisionDetector(VisionTextDetector):
    """Returns a fixed answer (or raises a fixed error) and counts calls."""

    name = "mock"

    def __init__(self, text: str = "", error: Optional[Exception] = None):
        self.text = text
        self.error = error
        self.calls = 0

    def detect_text(self, image_bytes: bytes) -> str:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.text


def create_detector(settings: Optional[VisionSettings] = None) -> Optional[VisionTextDetector]:
    """
    Build the configured vision backend.

    Returns:
        A detector, or None when the provider is disabled or has no credentials
    """
    settings = settings or VisionSettings()
    provider = (settings.provider or "none").strip().lower()

    if provider in ("none", "off", "disabled"):
        return None
    if provider == "cloud":
        if not settings.api_key:
            logger.info("[Vision] GOOGLE_VISION_API_KEY not set, cloud fallback disabled")
            return None
        return CloudVisionDetector(settings.api_key, settings.endpoint, settings.timeout_seconds)
    if provider == "ollama":
        return OllamaVisionDetector(settings.ollama_model, settings.ollama_url, settings.timeout_seconds)
    if provider == "mock":
        return MockVisionDetector()
    raise ValueError(f"Unknown vision provider '{settings.provider}'")


class VisionFallbackGate:
    """
    Decides on and merges the vision second opinion.

    The backend is unreliable by assumption: anything it raises, including
    encoding the image for it, leaves the local candidates unchanged.
    """

    def __init__(
        self,
        detector: Optional[VisionTextDetector],
        ranker: Optional[CandidateRanker] = None,
        scoring: Optional[ScoringSettings] = None
    ):
        self.detector = detector
        self.scoring = scoring or (ranker.scoring if ranker else ScoringSettings())
        self.ranker = ranker or CandidateRanker(self.scoring)

    def should_trigger(self, candidates: Sequence[Candidate], mode: Mode) -> bool:
        """
        No candidates, or a top line that names no food and is either short
        on letters or low scoring. Never in FAST mode.
        """
        if mode == Mode.FAST or self.detector is None:
            return False
        if not candidates:
            return True
        top = candidates[0]
        if has_food_keyword(top.text):
            return False
        letters = sum(1 for c in top.text if c.isalpha())
        return letters < self.scoring.fallback_min_alpha or top.score < self.scoring.fallback_min_score

    def apply(
        self,
        candidates: Sequence[Candidate],
        image: Union[bytes, Callable[[], bytes]],
        brand_text: str = ""
    ) -> Tuple[List[Candidate], bool]:
        """
        Ask the vision backend and merge its lines ahead of the local ones.

        Args:
            candidates: Current ranked local candidates
            image: Image bytes, or a callable producing them (encoded only on trigger)
            brand_text: Brand-zone read for the re-rank

        Returns:
            (ranked candidates, whether vision lines were merged)
        """
        try:
            image_bytes = image() if callable(image) else image
            text = self.detector.detect_text(image_bytes)
        except Exception as e:
            logger.warning("[Vision] %s fallback failed: %s", self.detector.name, e)
            return list(candidates), False

        if not isinstance(text, str):
            logger.warning("[Vision] %s returned %s, ignoring", self.detector.name, type(text).__name__)
            return list(candidates), False
        fallback = self.ranker.candidates_from_text(text, "vision")
        if not fallback:
            logger.info("[Vision] %s returned no usable lines", self.detector.name)
            return list(candidates), False

        logger.info("[Vision] Merged %d lines from %s", len(fallback), self.detector.name)
        return self.ranker.rank(fallback + list(candidates), brand_text), True
