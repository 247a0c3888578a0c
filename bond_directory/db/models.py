"""
Bond directory data models - canonical bond and issuer records
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


class OwnershipType(str, Enum):
    PRIVATE = "private"
    PSU = "psu"
    GOVERNMENT = "government"
    UNKNOWN = "unknown"


class CouponType(str, Enum):
    FIXED = "fixed"
    FLOATING = "floating"
    ZERO = "zero"


class CouponFrequency(str, Enum):
    ANNUAL = "annual"
    SEMI_ANNUAL = "semi-annual"
    QUARTERLY = "quarterly"
    MONTHLY = "monthly"


class BondType(str, Enum):
    CORPORATE = "corporate"
    PSU = "psu"
    GSEC = "gsec"
    SDL = "sdl"
    TAX_FREE = "tax-free"


class ActiveStatus(str, Enum):
    ACTIVE = "Active"
    MATURED = "Matured"


class RatingHistoryEntry(BaseModel):
    """One rating observation"""
    agency: str = "Unknown"
    value: Optional[str] = None
    date: datetime = Field(default_factory=datetime.utcnow)
    outlook: str = "stable"


class Issuer(BaseModel):
    """Issuer sub-record embedded in each bond"""
    id: str                                   # Slug generated from the name
    name: str = ""
    sector: Optional[str] = None
    ownership_type: OwnershipType = OwnershipType.UNKNOWN
    issuer_type: Optional[str] = None         # Upstream label, e.g. "Central PSU"
    latest_rating: Optional[str] = None
    total_bonds: Optional[int] = None


class CanonicalBond(BaseModel):
    """
    One bond keyed by ISIN.

    Built from a primary listing record and then enriched in place; the
    ISIN never changes once assigned.
    """
    isin: str
    issuer: Issuer

    coupon_rate: Optional[float] = Field(default=None, ge=0)
    coupon_type: CouponType = CouponType.FIXED
    coupon_frequency: Optional[CouponFrequency] = None

    maturity_date: Optional[datetime] = None
    issue_date: Optional[datetime] = None

    face_value: Optional[float] = Field(default=None, ge=0)
    issue_size: Optional[float] = Field(default=None, ge=0)
    min_investment: Optional[float] = Field(default=None, ge=0)

    credit_rating: Optional[str] = None       # Raw, ';'-separated when multi-agency
    normalized_rating: str = "Unrated"     # Canonical grade
    rating_agency: Optional[str] = None
    rating_history: List[RatingHistoryEntry] = Field(default_factory=list)
    interest_rate_category: Optional[str] = None

    active_status: ActiveStatus = ActiveStatus.ACTIVE
    is_restructured: bool = False
    bond_type: BondType = BondType.CORPORATE
    issuer_type: Optional[str] = None
    listing_exchange: Optional[str] = None
    tax_free: bool = False
    secured: Optional[bool] = None

    # Provenance
    data_source: str
    last_synced_at: datetime = Field(default_factory=datetime.utcnow)
    api_response_raw: Optional[Dict[str, Any]] = None

    def to_document(self) -> Dict[str, Any]:
        """Persistence payload: JSON-compatible, without the raw upstream record"""
        return self.model_dump(mode="json", exclude={"api_response_raw"})

    def content_fingerprint(self) -> Dict[str, Any]:
        """Fields that decide whether a stored copy is out of date"""
        return self.model_dump(mode="json", exclude={"api_response_raw", "last_synced_at", "rating_history"})
