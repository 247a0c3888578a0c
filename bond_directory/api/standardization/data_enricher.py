"""
Data Enricher - Applies enrichment maps to canonical bonds

Maps are applied in a fixed order (credit rating, interest rate, issuer type,
issuer-wise, restructured). Every pass uses the same non-destructive rule: a
value only lands on the record when it is itself non-empty, so a later map
never blanks what an earlier source supplied.
"""

from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple
import structlog
from pydantic import BaseModel, Field, ValidationError

from bond_directory.core.exceptions import RecordValidationError
from bond_directory.db.models import CanonicalBond, RatingHistoryEntry
from .data_transformer import EnrichmentMap
from .field_mapper import is_empty
from .rating_normalizer import UNRATED, normalize_rating

logger = structlog.get_logger(__name__)

MERGE_ORDER: Tuple[str, ...] = (
    "credit_rating",
    "interest_rate",
    "issuer_type",
    "issuer_wise",
    "restructured",
)

# Never taken from an enrichment map
PROTECTED_FIELDS = frozenset({"isin", "data_source", "api_response_raw"})


def merge_non_destructive(target: Mapping[str, Any], patch: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Overlay patch onto target, skipping empty values

    Nested mappings merge recursively under the same rule. Neither input is
    modified.
    """
    merged = dict(target)
    for key, value in patch.items():
        if is_empty(value):
            continue
        current = merged.get(key)
        if isinstance(value, Mapping):
            merged[key] = merge_non_destructive(current if isinstance(current, Mapping) else {}, value)
        else:
            merged[key] = value
    return merged


class EnrichmentResult(BaseModel):
    """Outcome of enriching one batch"""
    bonds: List[CanonicalBond] = Field(default_factory=list)
    enriched: int = 0                                      # Bonds touched by at least one map
    applied: Dict[str, int] = Field(default_factory=dict)  # Map name -> bonds it changed
    errors: List[Dict[str, Any]] = Field(default_factory=list)


class DataEnricher:
    """Merges enrichment maps into primary bond records"""

    def __init__(self, order: Sequence[str] = MERGE_ORDER):
        self.order = tuple(order)

    def _ordered(self, maps: Iterable[EnrichmentMap]) -> List[EnrichmentMap]:
        def position(enrichment: EnrichmentMap) -> int:
            try:
                return self.order.index(enrichment.name)
            except ValueError:
                return len(self.order)
        return sorted(maps, key=position)

    def apply(self, bond: CanonicalBond, enrichment: EnrichmentMap) -> Tuple[CanonicalBond, bool]:
        """
        Apply one map to one bond

        Returns:
            (bond, changed)

        Raises:
            RecordValidationError: The merged record is no longer a valid bond
        """
        patch = enrichment.lookup(bond.isin, bond.issuer.id)
        if not patch:
            return bond, False

        patch = {key: value for key, value in patch.items() if key not in PROTECTED_FIELDS}
        current = bond.model_dump()
        merged = merge_non_destructive(current, patch)
        if merged == current:
            return bond, False

        try:
            return CanonicalBond.model_validate(merged), True
        except ValidationError as e:
            raise RecordValidationError(
                f"Enrichment '{enrichment.name}' produced an invalid record",
                details={"isin": bond.isin, "map": enrichment.name, "error": str(e)}
            ) from e

    def finalize(self, bond: CanonicalBond) -> CanonicalBond:
        """Recompute rating-derived fields from the merged credit rating"""
        grade = normalize_rating(bond.credit_rating)
        bond.normalized_rating = grade or UNRATED
        bond.issuer.latest_rating = grade

        if grade and not any(entry.value == grade for entry in bond.rating_history):
            bond.rating_history.append(RatingHistoryEntry(
                agency=bond.rating_agency or "Unknown",
                value=grade
            ))
        return bond

    def enrich(
        self,
        bonds: Iterable[CanonicalBond],
        maps: Iterable[EnrichmentMap],
        isins: Optional[Iterable[str]] = None
    ) -> EnrichmentResult:
        """
        Apply every map, in merge order, to every bond

        Args:
            bonds: Primary records keyed by ISIN
            maps: Enrichment maps; unknown names run after the known ones
            isins: Restrict enrichment to these ISINs (others pass through)
        """
        ordered = self._ordered(maps)
        only = set(isins) if isins is not None else None
        result = EnrichmentResult(applied={enrichment.name: 0 for enrichment in ordered})

        for bond in bonds:
            if only is not None and bond.isin not in only:
                result.bonds.append(bond)
                continue

            touched = False
            for enrichment in ordered:
                try:
                    bond, changed = self.apply(bond, enrichment)
                except RecordValidationError as e:
                    logger.warning("Enrichment skipped for record",
                                  isin=bond.isin,
                                  map=enrichment.name,
                                  error=e.message)
                    result.errors.append(e.to_dict())
                    continue
                if changed:
                    touched = True
                    result.applied[enrichment.name] += 1

            result.bonds.append(self.finalize(bond))
            if touched:
                result.enriched += 1

        logger.info("Enrichment complete",
                   bonds=len(result.bonds),
                   enriched=result.enriched,
                   applied=result.applied,
                   errors=len(result.errors))
        return result
