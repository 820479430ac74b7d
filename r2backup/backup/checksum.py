"""
Integrity checks for uploaded archives.

For single-part uploads the store's ETag is the hex MD5 of the object, so it
can be compared to a local digest directly. Multipart uploads report a
composite tag (``<md5-of-md5s>-<part count>``) that cannot be reproduced
from the file alone; for those only the byte length is compared.
"""

import hashlib
import logging
from dataclasses import dataclass
from typing import Optional, Union


logger = logging.getLogger(__name__)

CHUNK_SIZE = 8 * 1024 * 1024

MULTIPART_MARKER = '-'


class IntegrityError(Exception):
    """Raised when a remote object does not match the local archive."""
    pass


class ChecksumMismatchError(IntegrityError):
    pass


class SizeMismatchError(IntegrityError):
    pass


@dataclass(frozen=True)
class ContentHash:
    """Tag that equals the object's content hash."""
    value: str


@dataclass(frozen=True)
class OpaqueComposite:
    """Multipart tag; not comparable to a local hash."""
    raw: str


IntegrityTag = Union[ContentHash, OpaqueComposite]


def parse_integrity_tag(etag: Optional[str]) -> IntegrityTag:
    """
    Classify a store-reported ETag.

    Args:
        etag: Raw ETag, with or without surrounding quotes

    Returns:
        OpaqueComposite if the tag carries a multipart marker, else ContentHash
    """
    value = (etag or '').strip().strip('"').lower()
    if MULTIPART_MARKER in value:
        return OpaqueComposite(raw=value)
    return ContentHash(value=value)


def compute_md5(path: str) -> Optional[str]:
    """
    Compute the hex MD5 digest of a file.

    Returns None when MD5 is unavailable on this interpreter (e.g. FIPS
    builds), in which case callers fall back to size-only verification.
    """
    try:
        digest = hashlib.md5()
    except ValueError as e:
        logger.warning(f"MD5 is not available, upload will be verified by size only: {e}")
        return None

    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b''):
            digest.update(chunk)

    return digest.hexdigest()


def verify_integrity(local_hash: Optional[str], local_size: int, remote) -> str:
    """
    Check a remote object against the local archive.

    Args:
        local_hash: Hex MD5 of the local file, or None if it could not be computed
        local_size: Local file size in bytes
        remote: RemoteObject for the uploaded key

    Returns:
        'checksum' if the content hash was compared, 'size' for the size fallback

    Raises:
        ChecksumMismatchError: If the content hash differs
        SizeMismatchError: If the size fallback is used and sizes differ
    """
    tag = remote.integrity_tag

    if local_hash is not None and isinstance(tag, ContentHash):
        if tag.value != local_hash.lower():
            raise ChecksumMismatchError(
                f"Checksum mismatch for {remote.key}: local {local_hash}, remote {tag.value}"
            )
        logger.info(f"Checksum verified for {remote.key}: {local_hash}")
        return 'checksum'

    if isinstance(tag, OpaqueComposite):
        logger.info(f"Multipart ETag for {remote.key} ({tag.raw}), comparing sizes instead")

    if remote.size != local_size:
        raise SizeMismatchError(
            f"Size mismatch for {remote.key}: local {local_size} bytes, remote {remote.size} bytes"
        )

    logger.info(f"Size verified for {remote.key}: {local_size} bytes")
    return 'size'
