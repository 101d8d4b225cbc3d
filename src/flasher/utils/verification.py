"""MD5 helpers for comparing firmware images."""

import hashlib
import logging


def compute_md5(data: bytes, chunk_size: int = 8192) -> str:
    """Compute MD5 hash of an in-memory image.

    Args:
        data: Image bytes
        chunk_size: Update granularity

    Returns:
        32-character hex MD5 hash string
    """
    md5_hash = hashlib.md5()
    view = memoryview(data)
    for offset in range(0, len(view), chunk_size):
        md5_hash.update(view[offset:offset + chunk_size])
    return md5_hash.hexdigest()


def verify_image(read_back: bytes, expected: bytes) -> bool:
    """Compare a read-back image against the image that was written.

    Returns:
        True if the MD5 digests match, False otherwise
    """
    logger = logging.getLogger("flasher.verification")

    expected_md5 = compute_md5(expected)
    actual_md5 = compute_md5(read_back)

    match = actual_md5 == expected_md5
    if match:
        logger.info(f"Image verification passed ({len(expected)} bytes, md5={expected_md5})")
    else:
        logger.error(
            f"Image mismatch: expected {expected_md5}, got {actual_md5} "
            f"({len(read_back)}/{len(expected)} bytes)"
        )
    return match


def verify_image_or_raise(read_back: bytes, expected: bytes) -> None:
    """Compare images, raise if they differ.

    Raises:
        ValueError: If the digests differ
    """
    if not verify_image(read_back, expected):
        raise ValueError(
            f"MD5_MISMATCH: expected {compute_md5(expected)}, got {compute_md5(read_back)}"
        )
