"""Content hashing for screenshot duplicate detection."""

import hashlib

IMAGE_MESSAGE_PREFIX = "image-"


def compute_sha256(data: bytes) -> str:
    """
    Compute SHA-256 hash of data.

    Args:
        data: Raw bytes to hash

    Returns:
        Hexadecimal SHA-256 hash string
    """
    return hashlib.sha256(data).hexdigest()


def image_message_id(image_hash: str) -> str:
    """Ledger message id for a screenshot with the given hash."""
    return f"{IMAGE_MESSAGE_PREFIX}{image_hash}"
