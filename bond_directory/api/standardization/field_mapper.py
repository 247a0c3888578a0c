"""
Field Mapper - Alias tables for the upstream's inconsistent field names
"""

import math
import yaml
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple
import structlog

from bond_directory.core.config import get_absolute_path, settings

logger = structlog.get_logger(__name__)

# Concept -> candidate field names, in priority order: spreadsheet column
# label first, then camelCase, then snake_case, then legacy names.
FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "isin": ("ISIN", "isin", "Isin"),
    "issuer_name": ("Name of Issuer", "issuerName", "companyName", "issuer_name", "company_name", "name"),
    "sector": ("Business Sector", "sector", "industrySector", "industry"),
    "issuer_type": ("Type of Issuer-Ownership", "Type of Issuer-Nature", "issuerType", "issuer_type", "ownerType"),
    "issuer_category": (
        "Type of Issuer-Ownership", "Type of Issuer-Nature", "Issuer Type",
        "issuerType", "issuer_type", "ownerType", "category",
    ),
    "coupon_rate": ("Coupon Rate (%)", "couponRate", "interestRate", "coupon_rate", "interest_rate", "rate"),
    "coupon_type": ("Coupon Type", "couponType", "interestType", "coupon_type", "interest_type"),
    "coupon_frequency": ("Frequency of Interest Payment", "couponFrequency", "interestFrequency", "payment_frequency"),
    "maturity_date": ("Date of Redemption/Conversion", "maturityDate", "redemptionDate", "maturity_date"),
    "issue_date": ("Date of Allotment", "allotmentDate", "issueDate", "allotment_date", "issue_date"),
    "face_value": ("Face Value(in Rs.)", "faceValue", "face_value"),
    "min_investment": ("Minimum Investment", "minInvestment", "minimum_investment"),
    "issue_size": ("Issue Size(in Rs.)", "issueSize", "issue_size", "issuedAmount"),
    "credit_rating": ("Credit Rating", "creditRating", "rating", "credit_rating"),
    "rating_agency": ("Rating Agency", "ratingAgency", "rating_agency", "ratingAgencyName", "agencyName"),
    "interest_rate_category": (
        "Interest Rate Range", "interestRateRange", "rateRange", "bucket", "rate_range", "category",
    ),
    "listing_exchange": ("Listing Exchange", "listingExchange", "exchange", "stockExchange"),
    "tax_free": ("Tax Free", "taxFree", "taxFreeStatus", "tax_free"),
    "secured": ("Secured", "secured", "securedStatus"),
    "total_bonds": ("Total Bonds", "No. of ISINs", "totalBonds", "total_bonds", "bondCount"),
}


def is_empty(value: Any) -> bool:
    """None, NaN, and blank strings count as missing"""
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return False


def pick(raw: Mapping[str, Any], *candidates: str) -> Any:
    """First candidate field with a non-empty value, else None"""
    for key in candidates:
        value = raw.get(key)
        if not is_empty(value):
            return value
    return None


class FieldMappingConfig:
    """Optional YAML overrides for the alias table"""

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path or settings.FIELD_MAPPING_CONFIG_PATH
        self.aliases: Dict[str, List[str]] = {}
        self._load_config()

    def _load_config(self):
        """
        Load alias overrides of the form:

            aliases:
              maturity_date: ["Maturity Date", "maturityDate"]
        """
        config_file = get_absolute_path(self.config_path)
        if not config_file.exists():
            logger.debug("Field mapping config not found; using built-in aliases", path=self.config_path)
            return

        try:
            with open(config_file, "r") as f:
                config_data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.error("Failed to load field mapping config", path=self.config_path, error=str(e))
            return

        overrides = config_data.get("aliases") or {}
        for concept, candidates in overrides.items():
            if not isinstance(candidates, list) or not all(isinstance(c, str) for c in candidates):
                logger.warning("Ignoring malformed alias override", concept=concept)
                continue
            self.aliases[concept] = candidates

        logger.info("Field mapping config loaded",
                   path=self.config_path,
                   overridden=sorted(self.aliases))


class FieldMapper:
    """Resolves canonical concepts against raw upstream records"""

    def __init__(
        self,
        config_path: Optional[str] = None,
        aliases: Optional[Mapping[str, Iterable[str]]] = None
    ):
        self.aliases: Dict[str, Tuple[str, ...]] = dict(FIELD_ALIASES)
        for concept, candidates in FieldMappingConfig(config_path).aliases.items():
            self.aliases[concept] = tuple(candidates)
        for concept, candidates in (aliases or {}).items():
            self.aliases[concept] = tuple(candidates)

    def candidates(self, concept: str) -> Tuple[str, ...]:
        try:
            return self.aliases[concept]
        except KeyError:
            raise KeyError(f"Unknown field concept: {concept}") from None

    def pick(self, raw: Mapping[str, Any], concept: str) -> Any:
        """Value of a concept in a raw record, honoring alias priority"""
        return pick(raw, *self.candidates(concept))

    def map_record(self, raw: Mapping[str, Any]) -> Dict[str, Any]:
        """Every known concept resolved against one raw record"""
        return {concept: pick(raw, *candidates) for concept, candidates in self.aliases.items()}

    def unmapped_fields(self, raw: Mapping[str, Any]) -> List[str]:
        """Raw field names no alias refers to; useful when the upstream renames columns"""
        known = {name for candidates in self.aliases.values() for name in candidates}
        return [key for key in raw if key not in known]


_default_mapper: Optional[FieldMapper] = None


def get_field_mapper() -> FieldMapper:
    """Shared mapper built from settings on first use"""
    global _default_mapper
    if _default_mapper is None:
        _default_mapper = FieldMapper()
    return _default_mapper
