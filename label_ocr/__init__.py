"""
Label OCR - reads the product name off a photographed grocery label.

    from label_ocr import RequestCoordinator
    result = RequestCoordinator().process(open("beans.jpg", "rb").read())
    print(result.text)
"""

from .core import FinalResult, LabelOcrError, Mode, ProductDraft, Settings, load_settings
from .pipeline import (
    OCR_PIPELINE_VERSION,
    RequestCoordinator,
    RequestTimeoutError,
    handle_request,
)

__version__ = "0.1.0"

__all__ = [
    "FinalResult",
    "LabelOcrError",
    "Mode",
    "ProductDraft",
    "Settings",
    "load_settings",
    "OCR_PIPELINE_VERSION",
    "RequestCoordinator",
    "RequestTimeoutError",
    "handle_request",
]
