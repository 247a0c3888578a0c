"""
Field Standardization Package

This package contains components for field mapping, value normalization,
rating canonicalization, and the transform/enrich steps that turn raw NSDL
records into canonical bonds.
"""

from .field_mapper import FieldMapper, pick
from .classification import IssuerClassifier, KeywordIssuerClassifier
from .rating_normalizer import get_rating_rank, normalize_rating, rating_sort_key
from .data_transformer import EnrichmentMap, transform_listed_security
from .data_enricher import DataEnricher, merge_non_destructive

__all__ = [
    "FieldMapper",
    "pick",
    "IssuerClassifier",
    "KeywordIssuerClassifier",
    "get_rating_rank",
    "normalize_rating",
    "rating_sort_key",
    "EnrichmentMap",
    "transform_listed_security",
    "DataEnricher",
    "merge_non_destructive"
]
