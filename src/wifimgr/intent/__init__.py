"""Intent configuration: the operator's declared device state."""
from .loader import IntentStore, load_document, load_intent_file, parse_document
from .schema import (
    DeviceIntent,
    INTENT_CORE_FIELDS,
    INTENT_VERSION,
    IntentFile,
    SiteIntent,
    parse_intent,
)
from .validator import IntentValidator, ValidationResult

__all__ = [
    # Schema
    "DeviceIntent",
    "INTENT_CORE_FIELDS",
    "INTENT_VERSION",
    "IntentFile",
    "SiteIntent",
    "parse_intent",
    # Loading
    "IntentStore",
    "load_document",
    "load_intent_file",
    "parse_document",
    # Validation
    "IntentValidator",
    "ValidationResult",
]
