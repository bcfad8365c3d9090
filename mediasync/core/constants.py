"""Application constants.

Contains media type tables, Telegram limits, and the Glide column mapping.
"""

# ---------------------------------------------------------------------------
# Telegram limits
# ---------------------------------------------------------------------------
# Upload limit of the storage bucket
MAX_FILE_SIZE_BYTES: int = 50 * 1024 * 1024

# Albums carry at most 10 items
TELEGRAM_MAX_GROUP_SIZE: int = 10

WEBHOOK_SECRET_HEADER: str = "X-Telegram-Bot-Api-Secret-Token"

# ---------------------------------------------------------------------------
# Media kinds -> storage extension / MIME type
# ---------------------------------------------------------------------------
DEFAULT_EXTENSIONS: dict[str, str] = {
    "photo": "jpg",
    "video": "mp4",
    "animation": "mp4",
    "document": "bin",
}

DEFAULT_MIME_TYPES: dict[str, str] = {
    "photo": "image/jpeg",
    "video": "video/mp4",
    "animation": "video/mp4",
    "document": "application/octet-stream",
}

MIME_TYPES_BY_EXTENSION: dict[str, str] = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "tiff": "image/tiff",
    "bmp": "image/bmp",
    "heic": "image/heic",
    "heif": "image/heif",
    "mp4": "video/mp4",
    "mov": "video/quicktime",
    "webm": "video/webm",
    "avi": "video/x-msvideo",
    "mkv": "video/x-matroska",
    "3gp": "video/3gpp",
    "wmv": "video/x-ms-wmv",
    "ogg": "video/ogg",
    "pdf": "application/pdf",
    "doc": "application/msword",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}

EXTENSIONS_BY_MIME_TYPE: dict[str, str] = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/tiff": "tiff",
    "image/bmp": "bmp",
    "image/heic": "heic",
    "image/heif": "heif",
    "video/mp4": "mp4",
    "video/quicktime": "mov",
    "video/webm": "webm",
    "video/x-msvideo": "avi",
    "video/x-matroska": "mkv",
    "video/3gpp": "3gp",
    "video/x-ms-wmv": "wmv",
    "video/ogg": "ogg",
    "application/pdf": "pdf",
    "application/msword": "doc",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": "docx",
}

# ---------------------------------------------------------------------------
# Supabase tables
# ---------------------------------------------------------------------------
MESSAGES_TABLE: str = "telegram_messages"
GROUPS_TABLE: str = "media_groups"
MEDIA_TABLE: str = "telegram_media"
ANALYSIS_TABLE: str = "caption_analyses"
OUTBOX_TABLE: str = "glide_sync_queue"

# ---------------------------------------------------------------------------
# Glide
# ---------------------------------------------------------------------------
GLIDE_MUTATE_URL: str = "https://api.glideapp.io/api/function/mutateTables"

# MediaRecord field -> Glide column name
GLIDE_COLUMNS: dict[str, str] = {
    "file_unique_ref": "file_unique_id",
    "file_ref": "file_id",
    "file_kind": "file_type",
    "public_url": "public_url",
    "thumbnail_url": "thumbnail_url",
    "storage_key": "storage_path",
    "mime_type": "mime_type",
    "caption": "caption",
    "source_message_id": "message_id",
    "chat_id": "chat_id",
    "group_id": "media_group_id",
    "processing_state": "processing_state",
    "last_error": "processing_error",
    "created_at": "created_at",
    "updated_at": "updated_at",
}

# ProductInfo field -> Glide column name
GLIDE_PRODUCT_COLUMNS: dict[str, str] = {
    "product_name": "product_name",
    "product_code": "product_code",
    "vendor_uid": "vendor_uid",
    "purchase_date": "purchase_date",
    "quantity": "quantity",
    "notes": "notes",
}

# ---------------------------------------------------------------------------
# Caption analysis
# ---------------------------------------------------------------------------
CAPTION_SYSTEM_PROMPT: str = """\
Extract product information from captions following these rules:

1. product_name: Product name from caption
2. product_code: Code after # (without the #)
3. quantity: Number after "x" (if present), ignore anything in () which should be added to notes
4. vendor_uid: Letters before numbers in the code
5. purchase_date: Convert 6 digits from code (mmDDyy) to YYYY-MM-DD
6. notes: Any text in parentheses or text that is not part of the product name, product code, purchase date, vendor uid, or quantity

Return a JSON object with:
- product_name: string or null
- product_code: string or null
- quantity: number or null
- vendor_uid: string or null
- purchase_date: string or null (in YYYY-MM-DD format)
- notes: string or null
"""
