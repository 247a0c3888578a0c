"""
Data Transformer - Raw upstream records into canonical bonds and enrichment maps

One primary transformer builds CanonicalBond records from the listing
endpoints; one extractor per secondary endpoint builds an EnrichmentMap that
the enricher later applies.
"""

from datetime import date
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple
import structlog
from pydantic import BaseModel, Field

from bond_directory.core.exceptions import RecordValidationError
from bond_directory.db.models import (
    ActiveStatus,
    CanonicalBond,
    Issuer,
    RatingHistoryEntry,
)
from .classification import IssuerClassifier, default_classifier
from .field_mapper import FieldMapper, get_field_mapper, is_empty
from .field_normalizer import (
    determine_active_status,
    generate_slug,
    is_valid_isin,
    map_coupon_frequency,
    map_coupon_type,
    normalize_isin,
    parse_amount,
    parse_count,
    parse_date,
    parse_flag,
    parse_rate,
)
from .rating_normalizer import UNRATED, normalize_rating

logger = structlog.get_logger(__name__)

DATA_SOURCE_PREFIX = "IndiaBondInfo"


class EnrichmentMap(BaseModel):
    """
    Partial field sets from one secondary endpoint.

    Entries are looked up by ISIN first, then by issuer slug. Keys are
    CanonicalBond field names; an "issuer" key holds a partial Issuer.
    """
    name: str
    by_isin: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    by_issuer: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    skipped: int = 0

    def __len__(self) -> int:
        return len(self.by_isin) + len(self.by_issuer)

    def lookup(self, isin: str, issuer_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        if isin in self.by_isin:
            return self.by_isin[isin]
        if issuer_id and issuer_id in self.by_issuer:
            return self.by_issuer[issuer_id]
        return None


def _text(value: Any) -> Optional[str]:
    if is_empty(value):
        return None
    return str(value).strip()


def transform_listed_security(
    raw: Mapping[str, Any],
    active_status: Optional[str] = None,
    source: Optional[str] = None,
    mapper: Optional[FieldMapper] = None,
    classifier: Optional[IssuerClassifier] = None,
    today: Optional[date] = None
) -> CanonicalBond:
    """
    Build a canonical bond from a listing record

    Args:
        raw: Record from /listofsecurities or /listedsecurities
        active_status: Status implied by the endpoint, used when the record
            carries no maturity date
        source: Provenance tag; defaults to "IndiaBondInfo-<status>"
        mapper: Alias resolver
        classifier: Ownership and bond-type heuristics
        today: Reference date for the active/matured decision

    Raises:
        RecordValidationError: The record has no valid ISIN
    """
    mapper = mapper or get_field_mapper()
    classifier = classifier or default_classifier

    isin = normalize_isin(mapper.pick(raw, "isin"))
    if not is_valid_isin(isin):
        raise RecordValidationError(
            "Record has no valid ISIN",
            details={"isin": isin or None, "source": source}
        )

    issuer_name = _text(mapper.pick(raw, "issuer_name")) or ""
    issuer_type = _text(mapper.pick(raw, "issuer_type"))
    raw_rating = _text(mapper.pick(raw, "credit_rating"))
    rating_agency = _text(mapper.pick(raw, "rating_agency"))
    grade = normalize_rating(raw_rating)
    tax_free = parse_flag(mapper.pick(raw, "tax_free")) or False

    maturity_date = parse_date(mapper.pick(raw, "maturity_date"))
    if maturity_date is not None:
        status = determine_active_status(maturity_date, today)
    else:
        status = ActiveStatus(active_status) if active_status else ActiveStatus.ACTIVE

    issuer = Issuer(
        id=generate_slug(issuer_name),
        name=issuer_name,
        sector=_text(mapper.pick(raw, "sector")),
        ownership_type=classifier.ownership_type(issuer_name, issuer_type),
        issuer_type=issuer_type,
        latest_rating=grade
    )

    return CanonicalBond(
        isin=isin,
        issuer=issuer,
        coupon_rate=parse_rate(mapper.pick(raw, "coupon_rate")),
        coupon_type=map_coupon_type(mapper.pick(raw, "coupon_type")),
        coupon_frequency=map_coupon_frequency(mapper.pick(raw, "coupon_frequency")),
        maturity_date=maturity_date,
        issue_date=parse_date(mapper.pick(raw, "issue_date")),
        face_value=parse_amount(mapper.pick(raw, "face_value")),
        issue_size=parse_amount(mapper.pick(raw, "issue_size")),
        min_investment=parse_amount(mapper.pick(raw, "min_investment")),
        credit_rating=raw_rating,
        normalized_rating=grade or UNRATED,
        rating_agency=rating_agency,
        rating_history=[RatingHistoryEntry(agency=rating_agency or "Unknown", value=grade)] if raw_rating else [],
        active_status=status,
        bond_type=classifier.bond_type(issuer_name, issuer_type, tax_free),
        issuer_type=issuer_type,
        listing_exchange=_text(mapper.pick(raw, "listing_exchange")),
        tax_free=tax_free,
        secured=parse_flag(mapper.pick(raw, "secured")),
        data_source=source or f"{DATA_SOURCE_PREFIX}-{status.value}",
        api_response_raw=dict(raw)
    )


def transform_listed_securities(
    records: Iterable[Mapping[str, Any]],
    active_status: Optional[str] = None,
    source: Optional[str] = None,
    mapper: Optional[FieldMapper] = None,
    classifier: Optional[IssuerClassifier] = None,
    today: Optional[date] = None
) -> Tuple[List[CanonicalBond], List[RecordValidationError]]:
    """
    Transform a batch, isolating per-record failures

    Returns:
        (bonds, rejected) where rejected holds one error per skipped record
    """
    bonds: List[CanonicalBond] = []
    rejected: List[RecordValidationError] = []

    for index, raw in enumerate(records):
        try:
            bonds.append(transform_listed_security(raw, active_status, source, mapper, classifier, today))
        except RecordValidationError as e:
            e.details.setdefault("index", index)
            rejected.append(e)
        except ValueError as e:
            # pydantic rejected a parsed value (e.g. negative coupon)
            error = RecordValidationError(
                "Record failed validation",
                details={"index": index, "source": source, "error": str(e)}
            )
            error.__cause__ = e
            rejected.append(error)

    if rejected:
        logger.warning("Records skipped during transform",
                      source=source,
                      transformed=len(bonds),
                      skipped=len(rejected))
    return bonds, rejected


def _isin_of(mapper: FieldMapper, record: Mapping[str, Any]) -> Optional[str]:
    isin = normalize_isin(mapper.pick(record, "isin"))
    return isin if is_valid_isin(isin) else None


def extract_credit_rating_map(
    records: Iterable[Mapping[str, Any]],
    mapper: Optional[FieldMapper] = None
) -> EnrichmentMap:
    """/creditratingwise: isin -> credit_rating, rating_agency"""
    mapper = mapper or get_field_mapper()
    enrichment = EnrichmentMap(name="credit_rating")

    for record in records:
        isin = _isin_of(mapper, record)
        rating = _text(mapper.pick(record, "credit_rating"))
        if not isin or not rating:
            enrichment.skipped += 1
            continue
        enrichment.by_isin[isin] = {
            "credit_rating": rating,
            "rating_agency": _text(mapper.pick(record, "rating_agency")),
        }
    return enrichment


def extract_interest_rate_map(
    records: Iterable[Mapping[str, Any]],
    mapper: Optional[FieldMapper] = None
) -> EnrichmentMap:
    """/interestratewise: isin -> interest_rate_category, coupon_rate"""
    mapper = mapper or get_field_mapper()
    enrichment = EnrichmentMap(name="interest_rate")

    for record in records:
        isin = _isin_of(mapper, record)
        if not isin:
            enrichment.skipped += 1
            continue
        enrichment.by_isin[isin] = {
            "interest_rate_category": _text(mapper.pick(record, "interest_rate_category")),
            "coupon_rate": parse_rate(mapper.pick(record, "coupon_rate")),
        }
    return enrichment


def extract_issuer_type_map(
    records: Iterable[Mapping[str, Any]],
    mapper: Optional[FieldMapper] = None
) -> EnrichmentMap:
    """/issuertypewise: isin and issuer slug -> issuer_type"""
    mapper = mapper or get_field_mapper()
    enrichment = EnrichmentMap(name="issuer_type")

    for record in records:
        issuer_type = _text(mapper.pick(record, "issuer_category"))
        if not issuer_type:
            enrichment.skipped += 1
            continue

        fields = {"issuer_type": issuer_type, "issuer": {"issuer_type": issuer_type}}
        isin = _isin_of(mapper, record)
        name = _text(mapper.pick(record, "issuer_name"))
        if isin:
            enrichment.by_isin[isin] = fields
        if name:
            enrichment.by_issuer[generate_slug(name)] = fields
        if not isin and not name:
            enrichment.skipped += 1
    return enrichment


def extract_issuer_wise_map(
    records: Iterable[Mapping[str, Any]],
    mapper: Optional[FieldMapper] = None
) -> EnrichmentMap:
    """/issuerwise: issuer slug -> issuer name, sector, type and bond count"""
    mapper = mapper or get_field_mapper()
    enrichment = EnrichmentMap(name="issuer_wise")

    for record in records:
        name = _text(mapper.pick(record, "issuer_name"))
        slug = generate_slug(name)
        if slug == "unknown":
            enrichment.skipped += 1
            continue
        enrichment.by_issuer[slug] = {
            "issuer": {
                "name": name,
                "sector": _text(mapper.pick(record, "sector")),
                "issuer_type": _text(mapper.pick(record, "issuer_category")),
                "total_bonds": parse_count(mapper.pick(record, "total_bonds")),
            }
        }
    return enrichment


def extract_restructured_set(
    records: Iterable[Mapping[str, Any]],
    mapper: Optional[FieldMapper] = None
) -> EnrichmentMap:
    """/restructuredisins: isin -> is_restructured"""
    mapper = mapper or get_field_mapper()
    enrichment = EnrichmentMap(name="restructured")

    for record in records:
        isin = _isin_of(mapper, record)
        if not isin:
            enrichment.skipped += 1
            continue
        enrichment.by_isin[isin] = {"is_restructured": True}
    return enrichment
