"""Claim extraction strategies over normalized page content."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from app.services.stages.content_extraction import ExtractedPage

ORGANIZATION_TYPES = frozenset({"Organization", "Corporation", "LocalBusiness"})
SERVICE_HEADING_KEYWORDS = ("service", "product")
SERVICE_VERBS = ("provide", "offer", "deliver", "service", "product", "solution")
MIN_SENTENCE_CHARS = 20
MAX_SENTENCE_CHARS = 200
MAX_SENTENCE_CLAIMS = 10

PHONE_PATTERN = re.compile(
    r"(?:call|phone|tel):?\s*(\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4})",
    re.IGNORECASE,
)
EMAIL_PATTERN = re.compile(
    r"(?:email|mail|contact):?\s*([a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,})",
    re.IGNORECASE,
)
LOCATION_PATTERN = re.compile(
    r"(?i:located|address|based)\s+(?i:in|at)\s+([^.]+?(?:CA|NY|TX|FL|[A-Z]{2}))\b"
)
_SENTENCE_BREAK = re.compile(r"(?<=[.!?])\s+")


@dataclass(slots=True)
class ExtractedClaim:
    claim_text: str
    claim_type: str
    confidence: float
    extractor: str
    source_selector: str | None = None


def _organization_records(structured_data: list[dict[str, Any]]) -> list[dict[str, Any]]:
    records = []
    for record in structured_data:
        declared = record.get("@type")
        types = declared if isinstance(declared, list) else [declared]
        if any(t in ORGANIZATION_TYPES for t in types):
            records.append(record)
    return records


def _format_address(address: Any) -> str:
    if isinstance(address, str):
        return address.strip()
    if isinstance(address, dict):
        parts = [
            address.get(key)
            for key in (
                "streetAddress",
                "addressLocality",
                "addressRegion",
                "postalCode",
                "addressCountry",
            )
        ]
        return ", ".join(str(part).strip() for part in parts if isinstance(part, str) and part.strip())
    return ""


def claims_from_structured_data(page: ExtractedPage) -> list[ExtractedClaim]:
    claims: list[ExtractedClaim] = []
    for record in _organization_records(page.structured_data):
        name = record.get("name")
        if isinstance(name, str) and name.strip():
            claims.append(
                ExtractedClaim(
                    claim_text=f"Company name: {name.strip()}",
                    claim_type="company_info",
                    confidence=0.95,
                    extractor="json_ld_parser",
                    source_selector="script[type='application/ld+json']",
                )
            )
        address = _format_address(record.get("address"))
        if address:
            claims.append(
                ExtractedClaim(
                    claim_text=f"Address: {address}",
                    claim_type="location",
                    confidence=0.9,
                    extractor="json_ld_parser",
                    source_selector="script[type='application/ld+json']",
                )
            )
    return claims


def claims_from_headings(page: ExtractedPage) -> list[ExtractedClaim]:
    claims: list[ExtractedClaim] = []
    for heading in page.headings:
        text = str(heading.get("text") or "").strip()
        if text and any(keyword in text.lower() for keyword in SERVICE_HEADING_KEYWORDS):
            claims.append(
                ExtractedClaim(
                    claim_text=text,
                    claim_type="service_claim",
                    confidence=0.7,
                    extractor="heading_parser",
                    source_selector=f"h{heading.get('level', 1)}",
                )
            )
    return claims


def claims_from_patterns(page: ExtractedPage) -> list[ExtractedClaim]:
    text = page.main_content
    claims = [
        ExtractedClaim(f"Phone: {m.group(1).strip()}", "contact", 0.8, "regex_parser", "text")
        for m in PHONE_PATTERN.finditer(text)
    ]
    claims.extend(
        ExtractedClaim(f"Email: {m.group(1).strip()}", "contact", 0.8, "regex_parser", "text")
        for m in EMAIL_PATTERN.finditer(text)
    )
    claims.extend(
        ExtractedClaim(f"Located in {m.group(1).strip()}", "location", 0.8, "regex_parser", "text")
        for m in LOCATION_PATTERN.finditer(text)
    )
    return claims


def claims_from_sentences(page: ExtractedPage, brand_name: str) -> list[ExtractedClaim]:
    brand = brand_name.strip().lower()
    if not brand:
        return []
    claims: list[ExtractedClaim] = []
    for sentence in _SENTENCE_BREAK.split(page.main_content):
        sentence = sentence.strip()
        if not MIN_SENTENCE_CHARS <= len(sentence) <= MAX_SENTENCE_CHARS:
            continue
        lowered = sentence.lower()
        if brand in lowered and any(verb in lowered for verb in SERVICE_VERBS):
            claims.append(
                ExtractedClaim(
                    claim_text=sentence,
                    claim_type="product_feature",
                    confidence=0.6,
                    extractor="content_analyzer",
                    source_selector="main_content",
                )
            )
            if len(claims) >= MAX_SENTENCE_CLAIMS:
                break
    return claims


def extract_claims(page: ExtractedPage, brand_name: str) -> list[ExtractedClaim]:
    """Run every strategy over one page and drop duplicate claims."""
    candidates = [
        *claims_from_structured_data(page),
        *claims_from_headings(page),
        *claims_from_patterns(page),
        *claims_from_sentences(page, brand_name),
    ]
    seen: set[tuple[str, str]] = set()
    unique: list[ExtractedClaim] = []
    for claim in candidates:
        key = (claim.claim_type, claim.claim_text.lower())
        if key in seen:
            continue
        seen.add(key)
        unique.append(claim)
    return unique
