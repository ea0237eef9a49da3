"""
File validation for attachment uploads.

Security layers:
1. Filename safety (path traversal, NUL and control characters, length)
2. Extension allow-list
3. Size bounds
4. Magic number verification of the declared MIME type
5. Storage path safety for every backend operation

Everything here is pure and synchronous; no I/O.
"""

from __future__ import annotations

import ntpath
import os
import posixpath
import re
import secrets
import time
from dataclasses import dataclass, field
from typing import Any, Iterable


DEFAULT_MAX_FILE_SIZE = 10 * 1024 * 1024
DEFAULT_MAX_FILES_PER_INVOICE = 10
MAX_FILENAME_LENGTH = 255
MAX_SANITIZED_STEM_LENGTH = 100

ALLOWED_EXTENSIONS: tuple[str, ...] = (
    ".pdf",
    ".png",
    ".jpg",
    ".jpeg",
    ".gif",
    ".docx",
    ".xlsx",
    ".xls",
    ".doc",
    ".txt",
    ".csv",
)

ZIP_SIGNATURE = b"PK\x03\x04"
OLE_SIGNATURE = b"\xD0\xCF\x11\xE0\xA1\xB1\x1A\xE1"

# Leading bytes per MIME type. Office Open XML files are ZIP containers and
# legacy Office files are OLE compound documents.
MIME_SIGNATURES: dict[str, bytes] = {
    "application/pdf": b"%PDF",
    "image/png": b"\x89PNG\r\n\x1a\n",
    "image/jpeg": b"\xFF\xD8\xFF",
    "image/gif": b"GIF8",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": ZIP_SIGNATURE,
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": ZIP_SIGNATURE,
    "application/zip": ZIP_SIGNATURE,
    "application/msword": OLE_SIGNATURE,
    "application/vnd.ms-excel": OLE_SIGNATURE,
}

# JPEG variants (FFD8FFE0, FFD8FFE1, FFD8FFDB, ...) share the first two bytes;
# the byte at this offset is not compared.
JPEG_VARIANT_OFFSET = 2

TEXT_MIME_TYPES = frozenset({"text/plain", "text/csv"})
TEXT_SNIFF_BYTES = 8192

_CONTROL_CHARS = re.compile(r"[\x00-\x1f]")
_UNSAFE_STEM_CHARS = re.compile(r"[^A-Za-z0-9_-]")
_REPEATED_UNDERSCORES = re.compile(r"_{2,}")
_EDGE_SEPARATORS = re.compile(r"^[_-]+|[_-]+$")
_DRIVE_LETTER = re.compile(r"^[A-Za-z]:")


@dataclass
class ValidationResult:
    """Outcome of validate_file_upload: every violated rule is listed."""
    valid: bool
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"valid": self.valid, "errors": list(self.errors)}


# ---------------------------------------------------------------------------
# MIME type
# ---------------------------------------------------------------------------

def _matches_signature(data: bytes, mime_type: str, signature: bytes) -> bool:
    if len(data) < len(signature):
        return False
    for i, expected in enumerate(signature):
        if data[i] == expected:
            continue
        if mime_type == "image/jpeg" and i == JPEG_VARIANT_OFFSET:
            continue
        return False
    return True


def _looks_like_text(data: bytes) -> bool:
    head = data[:TEXT_SNIFF_BYTES]
    if b"\x00" in head:
        return False
    if detect_mime_type(head) is not None:
        return False
    try:
        head.decode("utf-8")
    except UnicodeDecodeError as e:
        # The sniff window may cut a multi-byte sequence in half
        if e.start < len(head) - 3 or len(data) <= TEXT_SNIFF_BYTES:
            return False
    return True


def validate_mime_type(data: bytes, declared_mime_type: str) -> bool:
    """
    Check that the buffer's leading bytes match the declared MIME type.

    Text types have no magic number; they pass when the content decodes as
    UTF-8, holds no NUL bytes and matches no binary signature. Declared types
    outside the signature table are rejected.

    Args:
        data: File content
        declared_mime_type: MIME type claimed by the client

    Returns:
        True if the content is consistent with the declared type
    """
    mime_type = (declared_mime_type or "").split(";")[0].strip().lower()

    if mime_type in TEXT_MIME_TYPES:
        return _looks_like_text(data)

    signature = MIME_SIGNATURES.get(mime_type)
    if signature is None:
        return False
    return _matches_signature(data, mime_type, signature)


def detect_mime_type(data: bytes) -> str | None:
    """Return the first MIME type whose signature matches, or None."""
    for mime_type, signature in MIME_SIGNATURES.items():
        if _matches_signature(data, mime_type, signature):
            return mime_type
    return None


# ---------------------------------------------------------------------------
# Size
# ---------------------------------------------------------------------------

def validate_file_size(size: int, max_size: int = DEFAULT_MAX_FILE_SIZE) -> bool:
    """A file must be non-empty and no larger than max_size bytes."""
    return 0 < size <= max_size


def format_file_size(num_bytes: int) -> str:
    """Format a byte count for display, e.g. 1536 -> "1.5 KB"."""
    if num_bytes <= 0:
        return "0 B"
    units = ["B", "KB", "MB", "GB", "TB"]
    value = float(num_bytes)
    index = 0
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    return f"{round(value, 2):g} {units[index]}"


# ---------------------------------------------------------------------------
# Filenames
# ---------------------------------------------------------------------------

def validate_filename(filename: str) -> bool:
    """
    Check an uploaded filename.

    Rejects empty names, path separators, "..", NUL and other control
    characters, and names longer than 255 characters.
    """
    if not filename or not filename.strip():
        return False
    if ".." in filename or "/" in filename or "\\" in filename:
        return False
    if _CONTROL_CHARS.search(filename):
        return False
    if len(filename) > MAX_FILENAME_LENGTH:
        return False
    return True


def sanitize_filename(filename: str) -> str:
    """
    Make a filename safe for storage.

    The stem keeps only [A-Za-z0-9_-] (everything else becomes "_"),
    repeated underscores collapse, leading/trailing "_" and "-" are trimmed,
    and the stem is capped at 100 characters ("file" if nothing is left).
    The lower-cased original extension is reattached.

    Example:
        >>> sanitize_filename("My Invoice #1 (Final).PDF")
        'My_Invoice_1_Final.pdf'
    """
    stem, ext = os.path.splitext(filename)
    ext = ext.lower()

    sanitized = _UNSAFE_STEM_CHARS.sub("_", stem)
    sanitized = _REPEATED_UNDERSCORES.sub("_", sanitized)
    sanitized = _EDGE_SEPARATORS.sub("", sanitized)
    sanitized = sanitized[:MAX_SANITIZED_STEM_LENGTH]

    if not sanitized:
        sanitized = "file"

    if ext:
        ext_body = _UNSAFE_STEM_CHARS.sub("", ext[1:])
        ext = f".{ext_body}" if ext_body else ""

    return f"{sanitized}{ext}"


def generate_unique_filename(filename: str) -> str:
    """
    Build a collision-free storage filename.

    Format: {epoch_millis}_{8 hex chars}_{sanitized name}
    """
    timestamp = int(time.time() * 1000)
    random_part = secrets.token_hex(4)
    return f"{timestamp}_{random_part}_{sanitize_filename(filename)}"


# ---------------------------------------------------------------------------
# Extensions
# ---------------------------------------------------------------------------

def _normalize_extension(ext: str) -> str:
    ext = ext.strip().lower()
    return ext if ext.startswith(".") else f".{ext}"


def get_allowed_extensions(override: Iterable[str] | None = None) -> tuple[str, ...]:
    """
    Return the extensions accepted for upload.

    An override narrows the built-in allow-list; entries outside it are
    ignored so configuration can never widen what is accepted. An override
    with no allow-listed entries accepts nothing.
    """
    if override is None:
        return ALLOWED_EXTENSIONS
    requested = {_normalize_extension(ext) for ext in override}
    return tuple(ext for ext in ALLOWED_EXTENSIONS if ext in requested)


def validate_extension(
    filename: str,
    allowed_extensions: Iterable[str] | None = None,
) -> bool:
    """Check the filename's extension against the allow-list."""
    ext = os.path.splitext(filename)[1].lower()
    return ext in get_allowed_extensions(allowed_extensions)


# ---------------------------------------------------------------------------
# Storage paths
# ---------------------------------------------------------------------------

def validate_storage_path(storage_path: str) -> bool:
    """
    Check a backend-relative storage path.

    Rejects empty paths, NUL bytes, absolute paths (POSIX, UNC or drive
    letter) and any ".." segment, before or after normalization.
    """
    if not storage_path or not storage_path.strip():
        return False
    if "\x00" in storage_path:
        return False
    if storage_path.startswith(("/", "\\")) or _DRIVE_LETTER.match(storage_path):
        return False

    unified = storage_path.replace("\\", "/")
    if ".." in unified.split("/"):
        return False

    normalized = posixpath.normpath(unified)
    if normalized in (".", "") or normalized.startswith("..") or ".." in normalized.split("/"):
        return False
    if ntpath.isabs(storage_path):
        return False
    return True


def sanitize_storage_path(storage_path: str) -> str:
    """Normalize a storage path to forward slashes without a leading slash."""
    normalized = posixpath.normpath(storage_path.replace("\\", "/"))
    return normalized.lstrip("/")


# ---------------------------------------------------------------------------
# Combined validation
# ---------------------------------------------------------------------------

def validate_file_upload(
    data: bytes,
    original_name: str,
    declared_mime_type: str,
    max_size: int = DEFAULT_MAX_FILE_SIZE,
    allowed_extensions: Iterable[str] | None = None,
) -> ValidationResult:
    """
    Run every upload check and collect all failures.

    Args:
        data: File content
        original_name: Filename supplied by the client
        declared_mime_type: MIME type supplied by the client
        max_size: Maximum size in bytes
        allowed_extensions: Optional narrower allow-list

    Returns:
        ValidationResult listing every violated rule
    """
    errors: list[str] = []
    allowed = get_allowed_extensions(allowed_extensions)

    if not validate_filename(original_name):
        errors.append("Invalid filename. Filename contains illegal characters.")

    if not validate_extension(original_name, allowed):
        errors.append(
            f"File type not allowed. Allowed types: {', '.join(allowed) or 'none'}")

    if not validate_file_size(len(data), max_size):
        if len(data) == 0:
            errors.append("File is empty.")
        else:
            errors.append(
                f"File size exceeds limit. Maximum allowed: {format_file_size(max_size)}")

    if not validate_mime_type(data, declared_mime_type):
        errors.append(
            "File type mismatch. The actual file type does not match the declared type.")

    return ValidationResult(valid=not errors, errors=errors)


class FileValidator:
    """
    Upload validator bound to storage settings.

    Reads the maximum size and the optional allowed-types override from the
    configuration object (attachstore.config.settings.StorageSettings or
    anything with the same attributes).
    """

    def __init__(self, config: Any = None):
        self.config = config

    @property
    def max_file_size(self) -> int:
        return getattr(self.config, "max_file_size", None) or DEFAULT_MAX_FILE_SIZE

    @property
    def allowed_extensions(self) -> tuple[str, ...]:
        return get_allowed_extensions(getattr(self.config, "allowed_types", None))

    def validate_upload(
        self,
        data: bytes,
        original_name: str,
        declared_mime_type: str,
    ) -> ValidationResult:
        return validate_file_upload(
            data,
            original_name,
            declared_mime_type,
            max_size=self.max_file_size,
            allowed_extensions=self.allowed_extensions,
        )
