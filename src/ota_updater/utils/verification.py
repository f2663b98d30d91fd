"""SHA-512 verification utilities for package integrity checking."""

import hashlib
import logging
from typing import BinaryIO


def compute_sha512(stream: BinaryIO, chunk_size: int = 64 * 1024) -> str:
    """Compute the SHA-512 hash of a binary stream.

    Args:
        stream: Readable binary stream (file or ZIP member)
        chunk_size: Read buffer size

    Returns:
        128-character hex digest
    """
    digest = hashlib.sha512()
    while chunk := stream.read(chunk_size):
        digest.update(chunk)
    return digest.hexdigest()


def verify_sha512_or_raise(stream: BinaryIO, expected: str, name: str) -> None:
    """Verify a stream's SHA-512 hash, raise if it does not match.

    Args:
        stream: Readable binary stream
        expected: Expected hex digest (case-insensitive)
        name: Member name used in log and error messages

    Raises:
        ValueError: If the hash does not match
    """
    logger = logging.getLogger("ota_updater.verification")
    actual = compute_sha512(stream)

    if actual != expected.lower():
        logger.error(f"SHA-512 mismatch for {name}: expected {expected}, got {actual}")
        raise ValueError(f"CHECKSUM_MISMATCH: {name}")

    logger.debug(f"SHA-512 verification passed for {name}")
