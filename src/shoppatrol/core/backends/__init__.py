"""Backend clients for the catalog and risk classification APIs."""

from .base import (
    ApiBackend,
    BackendError,
    ClassifierError,
    FetchError,
    RateLimitError,
    TransientClassifierError,
    is_retryable_status,
)
from .catalog import (
    CatalogFetcher,
    CatalogPage,
    TransientFetchError,
    extract_shop_code,
    normalize_catalog_payload,
)
from .classifier import (
    CredentialCheck,
    RiskClassifier,
    canonical_risk_level,
    extract_json_object,
    parse_assessment,
)
from .credentials import CredentialPool
from .restricted import RESTRICTED_PREFIX, RestrictedCategoryScreen

__all__ = [
    # Base
    "ApiBackend",
    "is_retryable_status",
    # Errors
    "BackendError",
    "FetchError",
    "TransientFetchError",
    "RateLimitError",
    "ClassifierError",
    "TransientClassifierError",
    # Catalog
    "CatalogFetcher",
    "CatalogPage",
    "extract_shop_code",
    "normalize_catalog_payload",
    # Classifier
    "RiskClassifier",
    "CredentialCheck",
    "canonical_risk_level",
    "extract_json_object",
    "parse_assessment",
    # Credentials
    "CredentialPool",
    "RestrictedCategoryScreen",
    "RESTRICTED_PREFIX",
]
