"""
Ordered-candidate extractors for heterogeneous gateway responses.

The gateway reports the same artifact under different field names depending
on billing type and API version. Each extractor lists its candidates in
priority order; the first non-empty string wins.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence

# A candidate is a path of keys into nested mappings.
Candidate = Sequence[str]

PIX_PAYLOAD_CANDIDATES: tuple[Candidate, ...] = (
    ("pixCopiaECola",),
    ("pixPayload",),
    ("pixTransaction", "payload"),
)
PIX_QR_CODE_CANDIDATES: tuple[Candidate, ...] = (
    ("pixQrCode",),
    ("pixQrCodeImage",),
    ("pixTransaction", "encodedImage"),
)
BOLETO_URL_CANDIDATES: tuple[Candidate, ...] = (
    ("boletoUrl",),
    ("bankSlipUrl",),
)
CARD_CONTAINER_KEYS = ("creditCard", "creditCardData")
CARD_NUMBER_CANDIDATES: tuple[Candidate, ...] = (
    ("creditCardNumber",),
    ("creditCardNumberLast4",),
)
CARD_BRAND_CANDIDATES: tuple[Candidate, ...] = (
    ("creditCardBrand",),
    ("brand",),
)


@dataclass(frozen=True)
class ChargeArtifacts:
    invoice_url: Optional[str]
    pix_payload: Optional[str]
    pix_qr_code: Optional[str]
    boleto_url: Optional[str]
    card_last4: Optional[str]
    card_brand: Optional[str]


def _dig(source: Any, path: Candidate) -> Any:
    current = source
    for key in path:
        if not isinstance(current, Mapping):
            return None
        current = current.get(key)
    return current


def first_string(source: Any, candidates: Sequence[Candidate]) -> Optional[str]:
    for path in candidates:
        value = _dig(source, path)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def extract_pix_payload(response: Mapping[str, Any]) -> Optional[str]:
    return first_string(response, PIX_PAYLOAD_CANDIDATES)


def extract_pix_qr_code(response: Mapping[str, Any]) -> Optional[str]:
    return first_string(response, PIX_QR_CODE_CANDIDATES)


def extract_boleto_url(response: Mapping[str, Any]) -> Optional[str]:
    return first_string(response, BOLETO_URL_CANDIDATES)


def _card_container(response: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
    for key in CARD_CONTAINER_KEYS:
        container = response.get(key)
        if isinstance(container, Mapping):
            return container
    return None


def extract_card_last4(response: Mapping[str, Any]) -> Optional[str]:
    card = _card_container(response)
    if card is None:
        return None
    number = first_string(card, CARD_NUMBER_CANDIDATES)
    if number is None or len(number) < 4:
        return None
    return number[-4:]


def extract_card_brand(response: Mapping[str, Any]) -> Optional[str]:
    card = _card_container(response)
    if card is None:
        return None
    return first_string(card, CARD_BRAND_CANDIDATES)


def extract_charge_artifacts(response: Mapping[str, Any]) -> ChargeArtifacts:
    return ChargeArtifacts(
        invoice_url=first_string(response, (("invoiceUrl",),)),
        pix_payload=extract_pix_payload(response),
        pix_qr_code=extract_pix_qr_code(response),
        boleto_url=extract_boleto_url(response),
        card_last4=extract_card_last4(response),
        card_brand=extract_card_brand(response),
    )
