"""Log redaction and error-exposure settings for the SupportRelay API."""

# Substrings marking a log field as sensitive. Matching is case-insensitive.
SENSITIVE_KEYS: set[str] = {
    # Credentials for the automation webhook and the database
    "password",
    "secret",
    "token",
    "authorization",
    "api_key",
    "x-api-key",
    "cookie",
    "database_url",
    # Customer data surfaced by order and invoice lookups
    "email",
    "phone",
    "address",
    "customer",
    "card_number",
    "bank_account",
    # Conversation text: prompts and replies never reach the logs
    "prompt",
    "chat_response",
    "content",
}

# Production error bodies only ever carry these fields.
PRODUCTION_ERROR_FIELDS: set[str] = {
    "correlation_id",
    "type",
}

DEVELOPMENT_ERROR_FIELDS: set[str] = PRODUCTION_ERROR_FIELDS | {
    "details",
    "traceback",
    "exception_type",
    "validation_errors",
}


def get_allowed_error_fields(environment: str) -> set[str]:
    """Error-body fields that may be exposed in ``environment``."""
    if environment == "production":
        return PRODUCTION_ERROR_FIELDS.copy()
    return DEVELOPMENT_ERROR_FIELDS.copy()


def is_sensitive_key(key: str) -> bool:
    key_lower = key.lower()
    return any(sensitive in key_lower for sensitive in SENSITIVE_KEYS)
