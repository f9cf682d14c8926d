"""
Structured fields from a ranked label read.

Turns the final product line plus the Brand/Size zone reads into a
ProductDraft (brand, name, size, category, labels) for downstream catalog
matching.
"""

import re
from typing import List, Optional

from .core.utils import ProductDraft
from .label_corrector import proper_case
from .lexicon import BRAND_HINTS, CATEGORY_KEYWORDS, DESCRIPTOR_HINTS

# =============================================================================
# SIZE
# =============================================================================

FLOZ_RE = re.compile(r"\b(\d{1,3}(?:\.\d+)?)\s*FL\.?\s*OZ\b", re.I)
OZ_RE = re.compile(r"\b(\d{1,3}(?:\.\d+)?)\s*[O0]\s*[Z2]\b", re.I)
LB_PAREN_RE = re.compile(r"\(\s*([1Il](?:\.\d+)?)\s*L[B8]S?\s*\)", re.I)
LB_RE = re.compile(r"\b([1Il](?:\.\d+)?)\s*L[B8]S?\b", re.I)
GRAM_RE = re.compile(r"\b(453\.6|\d{2,4})\s*g\b", re.I)
NEAR_OZ_RE = re.compile(r"\b(\d{1,3})(?:\s|[^\w]){0,3}[O0][Z2]\b", re.I)
POUND_GRAMS = ("454", "453.6")


def _number(value: Optional[str]) -> str:
    return (value or "").replace("I", "1").replace("l", "1")


def _trim_number(value: str) -> str:
    try:
        number = float(value)
    except ValueError:
        return value
    return str(int(number)) if number.is_integer() else str(number)


def extract_size(text: str) -> str:
    """
    Pull a package size out of label text.

    Recognizes "15.5 OZ", "12 FL OZ", "1 LB", "454 g" and their OCR-mangled
    spellings ("15.5 0Z", "I LB"). Returns "" when no size is present.
    """
    if not text:
        return ""
    t = re.sub(r"\s{2,}", " ", text)

    floz = FLOZ_RE.search(t)
    if floz:
        return f"{_number(floz.group(1))} fl oz"

    oz = OZ_RE.search(t)
    lb = LB_PAREN_RE.search(t) or LB_RE.search(t)
    grams = GRAM_RE.search(t)
    pound_grams = bool(grams) and grams.group(1) in POUND_GRAMS

    if oz and lb:
        parts = [f"{_number(oz.group(1))} oz", f"({_number(lb.group(1))} lb)"]
        if pound_grams:
            parts.append("454 g")
        return " ".join(parts)
    if oz:
        if pound_grams:
            return f"{_number(oz.group(1))} oz (1 lb) 454 g"
        return f"{_number(oz.group(1))} oz"
    if lb:
        pounds = _trim_number(_number(lb.group(1)))
        return f"{pounds} lb (454 g)" if pound_grams else f"{pounds} lb"
    if grams:
        return "16 oz (1 lb)" if pound_grams else f"{grams.group(1)} g"

    near = NEAR_OZ_RE.search(t)
    if near:
        return f"{_number(near.group(1))} oz"
    return ""


# =============================================================================
# BRAND
# =============================================================================

def canonicalize_brand(brand: str) -> str:
    if re.search(r"trader\s*joe", brand, re.I):
        return "Trader Joe's"
    if re.search(r"rao", brand, re.I):
        return "Rao's"
    if re.search(r"annie'?s", brand, re.I):
        return "Annie's"
    if re.match(r"^o\s*organics$", brand, re.I):
        return "O Organics"
    return re.sub(r"\s+", " ", brand).strip()


def extract_brand(text: str) -> str:
    """Find a known brand in label text; "" when none is recognized."""
    if not text:
        return ""
    lower = text.lower()
    idx_trader = lower.find("trader")
    idx_joe = lower.find("joe")
    if idx_trader != -1 and idx_joe != -1 and abs(idx_joe - idx_trader) < 30:
        return "Trader Joe's"
    if re.search(r"\b[o0][^a-z0-9]{1,12}organics?\b", text, re.I):
        return "O Organics"

    padded = " " + re.sub(r"\s+", " ", lower) + " "
    for hint in BRAND_HINTS:
        needle = " " + re.sub(r"\s+", " ", hint.lower()) + " "
        if needle in padded:
            return canonicalize_brand(hint)
    return ""


def strip_brand_from_name(name: str, brand: str = "") -> str:
    """Remove a leading brand echo from a product name."""
    if not name:
        return ""
    out = name.strip()
    if brand:
        out = re.sub(r"^\s*" + re.escape(brand) + r"\s*[,:-]?\s*", "", out, flags=re.I)
    out = re.sub(r"^\s*trader\s*joe'?s\s*[,:-]?\s*", "", out, flags=re.I)
    return out.strip()


# =============================================================================
# CATEGORY AND LABELS
# =============================================================================

def detect_category(text: str) -> str:
    for category, patterns in CATEGORY_KEYWORDS.items():
        if any(p.search(text) for p in patterns):
            return category
    return ""


def extract_descriptors(text: str) -> List[str]:
    lower = text.lower()
    found = []
    for hint in DESCRIPTOR_HINTS:
        if hint in lower:
            label = proper_case(hint)
            if label not in found:
                found.append(label)
    return found


def derive_labels(text: str, descriptors: List[str], category: str = "") -> List[str]:
    labels = ["Food"]
    if category:
        labels.append(category)
    if any(d.lower() == "organic" for d in descriptors):
        labels.append("Organic")
    if re.search(r"gluten\s*free", text, re.I):
        labels.append("Gluten Free")
    if re.search(r"no\s+salt\s+added|low\s+sodium", text, re.I):
        labels.append("Low Sodium")
    return labels


def build_draft(text: str, brand_text: str = "", size_text: str = "") -> ProductDraft:
    """
    Assemble a ProductDraft.

    Args:
        text: Final ranked text (best line first)
        brand_text: Brand-zone read, preferred for the brand
        size_text: Size-zone read, preferred for the size

    Returns:
        ProductDraft with every field filled where the text supports it
    """
    lines = [line for line in (text or "").split("\n") if line.strip()]
    best = lines[0] if lines else ""

    brand = extract_brand(brand_text) or extract_brand(text or "")
    size = extract_size(size_text) or extract_size(text or "")
    category = detect_category(best) or detect_category(text or "")
    descriptors = extract_descriptors(best)
    name = proper_case(strip_brand_from_name(best, brand))

    return ProductDraft(
        brand=brand,
        name=name,
        size=size,
        category=category,
        labels=derive_labels(best, descriptors, category),
    )
