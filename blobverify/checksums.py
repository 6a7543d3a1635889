"""
Content checksums.

Computes the full digest set used as the ground truth for post-upload
re-reads. Comparisons are always made over every digest, not a single one.
"""

import hashlib

from blobverify.models import ChecksumSet

WIDE_HASH_DIGEST_SIZE = 32


class ChecksumEngine:
    """Stateless checksum calculator."""

    def compute_checksums(self, data: bytes) -> ChecksumSet:
        """
        Calculate SHA-256, SHA-512 and BLAKE2b-256 digests of data.

        Args:
            data: Raw blob bytes

        Returns:
            ChecksumSet with raw digest bytes
        """
        data = bytes(data)
        return ChecksumSet(
            sha256=hashlib.sha256(data).digest(),
            sha512=hashlib.sha512(data).digest(),
            wide_hash=hashlib.blake2b(data, digest_size=WIDE_HASH_DIGEST_SIZE).digest(),
        )

    def matches(self, data: bytes, expected: ChecksumSet) -> bool:
        return self.compute_checksums(data) == expected


_default_engine = ChecksumEngine()


def compute_checksums(data: bytes) -> ChecksumSet:
    """Compute checksums with a shared engine."""
    return _default_engine.compute_checksums(data)
