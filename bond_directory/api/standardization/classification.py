"""
Issuer Classification - Ownership and bond-type inference from issuer names

Keyword heuristics are best-effort. Matching is on whole words, so "gail"
does not fire inside "Abigail Finance", but any issuer that merely mentions
"government" in its name is still classified as government-owned.
"""

import re
from typing import Iterable, Optional, Protocol, Sequence

from bond_directory.db.models import BondType, OwnershipType

GOVERNMENT_KEYWORDS = ("government", "govt", "goi", "india bonds")
PSU_KEYWORDS = (
    "psu", "public sector", "bhel", "ongc", "ntpc", "gail", "iocl", "hpcl", "bpcl",
)
PRIVATE_KEYWORDS = ("private", "pvt")
GSEC_KEYWORDS = ("government", "gsec", "g-sec")
SDL_KEYWORDS = ("sdl", "state development loan", "state government")


def _keyword_pattern(keywords: Iterable[str]) -> re.Pattern:
    alternatives = "|".join(re.escape(keyword) for keyword in keywords)
    return re.compile(rf"(?<![a-z0-9])(?:{alternatives})(?![a-z0-9])")


class IssuerClassifier(Protocol):
    """Interface the transformers use to classify issuers"""

    def ownership_type(self, issuer_name: str, explicit_type: Optional[str] = None) -> OwnershipType:
        ...

    def bond_type(
        self,
        issuer_name: str,
        explicit_type: Optional[str] = None,
        tax_free: bool = False
    ) -> BondType:
        ...


class KeywordIssuerClassifier:
    """
    Keyword-table classifier.

    An explicit upstream type label (e.g. "Central PSU", "Private Sector") is
    consulted before the issuer name.
    """

    def __init__(
        self,
        government_keywords: Sequence[str] = GOVERNMENT_KEYWORDS,
        psu_keywords: Sequence[str] = PSU_KEYWORDS,
        private_keywords: Sequence[str] = PRIVATE_KEYWORDS,
        gsec_keywords: Sequence[str] = GSEC_KEYWORDS,
        sdl_keywords: Sequence[str] = SDL_KEYWORDS
    ):
        self._government = _keyword_pattern(government_keywords)
        self._psu = _keyword_pattern(psu_keywords)
        self._private = _keyword_pattern(private_keywords)
        self._gsec = _keyword_pattern(gsec_keywords)
        self._sdl = _keyword_pattern(sdl_keywords)

    def _ownership_from_text(self, text: str, allow_private: bool) -> Optional[OwnershipType]:
        if self._government.search(text):
            return OwnershipType.GOVERNMENT
        if self._psu.search(text):
            return OwnershipType.PSU
        if allow_private and self._private.search(text):
            return OwnershipType.PRIVATE
        return None

    def ownership_type(self, issuer_name: str, explicit_type: Optional[str] = None) -> OwnershipType:
        if explicit_type:
            found = self._ownership_from_text(explicit_type.lower(), allow_private=True)
            if found:
                return found

        name = (issuer_name or "").strip().lower()
        if not name:
            return OwnershipType.UNKNOWN
        return self._ownership_from_text(name, allow_private=False) or OwnershipType.PRIVATE

    def bond_type(
        self,
        issuer_name: str,
        explicit_type: Optional[str] = None,
        tax_free: bool = False
    ) -> BondType:
        if tax_free:
            return BondType.TAX_FREE

        if explicit_type:
            label = explicit_type.lower()
            if self._sdl.search(label):
                return BondType.SDL

        name = (issuer_name or "").lower()
        if self._sdl.search(name):
            return BondType.SDL
        if self._gsec.search(name):
            return BondType.GSEC
        if self.ownership_type(issuer_name, explicit_type) == OwnershipType.PSU:
            return BondType.PSU
        return BondType.CORPORATE


default_classifier = KeywordIssuerClassifier()
