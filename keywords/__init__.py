from .schemas import BulkOperationRequest, KeywordCreate, KeywordImportRequest, KeywordUpdate
from .service import (
    BulkResult,
    KeywordConflict,
    KeywordNotFound,
    UserContext,
    apply_bulk_operation,
    archive_old_keywords,
    bulk_insert_keywords,
    create_keyword,
    keyword_stats,
    list_keywords,
    paginate,
    soft_delete_keyword,
    update_keyword,
)
from .validation import (
    calculate_keyword_difficulty,
    sanitize_keyword,
    validate_instagram_keyword,
)

__all__ = [
    "BulkOperationRequest",
    "BulkResult",
    "KeywordConflict",
    "KeywordCreate",
    "KeywordImportRequest",
    "KeywordNotFound",
    "KeywordUpdate",
    "UserContext",
    "apply_bulk_operation",
    "archive_old_keywords",
    "bulk_insert_keywords",
    "calculate_keyword_difficulty",
    "create_keyword",
    "keyword_stats",
    "list_keywords",
    "paginate",
    "sanitize_keyword",
    "soft_delete_keyword",
    "update_keyword",
    "validate_instagram_keyword",
]
