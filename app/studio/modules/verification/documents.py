from __future__ import annotations

import base64
import binascii
import hashlib
import re

from app.studio.errors import ValidationError
from app.studio.storage import Storage, StorageError, clean_key

DATA_URI_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+);base64,(?P<data>.+)$", re.DOTALL)
BLOB_PREFIX = "blob:"

ALLOWED_TYPES = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "application/pdf": "pdf",
}


def decode_data_uri(value: str, *, max_bytes: int) -> tuple[str, bytes]:
    m = DATA_URI_RE.match(value.strip())
    if not m:
        raise ValueError("Document must be a base64 data URI or a blob reference.")
    mime = m.group("mime").lower()
    if mime not in ALLOWED_TYPES:
        raise ValueError(f"Unsupported document type: {mime}")
    # Reject oversized payloads before decoding them.
    if len(m.group("data")) * 3 // 4 > max_bytes + 3:
        raise ValueError(f"Document exceeds {max_bytes // (1024 * 1024)} MB.")
    try:
        data = base64.b64decode(m.group("data"), validate=True)
    except (binascii.Error, ValueError):
        raise ValueError("Document is not valid base64.")
    if not data:
        raise ValueError("Document is empty.")
    if len(data) > max_bytes:
        raise ValueError(f"Document exceeds {max_bytes // (1024 * 1024)} MB.")
    return mime, data


def store_document(storage: Storage, *, owner_key: str, slot: str, value: str, max_bytes: int) -> str:
    """
    Persist one KYC document and return its blob key.

    Accepts a pre-uploaded `blob:<key>` reference or an inline data URI.
    """
    value = (value or "").strip()
    if value.startswith(BLOB_PREFIX):
        key = value[len(BLOB_PREFIX):].strip()
        # Only documents uploaded by the same owner can be referenced.
        try:
            key = clean_key(key)
            found = key.startswith(f"kyc/{owner_key}/") and storage.exists(key)
        except StorageError:
            found = False
        if not found:
            raise ValidationError.from_errors({slot: "Referenced document was not found in storage."})
        return key
    try:
        mime, data = decode_data_uri(value, max_bytes=max_bytes)
    except ValueError as e:
        raise ValidationError.from_errors({slot: str(e)})
    return put_document(storage, owner_key=owner_key, slot=slot, mime=mime, data=data)


def put_document(storage: Storage, *, owner_key: str, slot: str, mime: str, data: bytes) -> str:
    digest = hashlib.sha256(data).hexdigest()
    key = f"kyc/{owner_key}/{slot}-{digest[:16]}.{ALLOWED_TYPES[mime]}"
    storage.put_bytes(key, data, content_type=mime)
    return key
