"""
Cache key generation.

Keys are ``{operation}_{hash}``. The default hash is a 32-bit rolling string
hash rendered in base 36, which keeps keys short and stable across
deployments that already hold cached documents. ``strong=True`` switches to a
truncated SHA-256 digest.
"""

from __future__ import annotations

import hashlib

_BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36_DIGITS[rem])
    return "".join(reversed(digits))


def rolling_hash(content: str) -> int:
    """31-multiplier rolling hash over UTF-16 code units, wrapped to int32.

    Args:
        content: String to hash

    Returns:
        Signed 32-bit hash
    """
    h = 0
    data = content.encode("utf-16-le")
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = (h * 31 + unit) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return h


class CacheKeyGenerator:
    """Generates deterministic cache keys from content and operation.

    Example:
        >>> generator = CacheKeyGenerator()
        >>> generator.generate("Love your content!", "categorization")
        'categorization_...'
    """

    def __init__(self, strong: bool = False) -> None:
        """Initialize key generator.

        Args:
            strong: Use a SHA-256 digest instead of the 32-bit rolling hash
        """
        self._strong = strong

    def generate(self, content: str, operation: str) -> str:
        """Generate the cache key for ``content`` under ``operation``."""
        if self._strong:
            digest = hashlib.sha256(content.encode("utf-8")).hexdigest()[:16]
        else:
            digest = _to_base36(abs(rolling_hash(content)))
        return f"{operation}_{digest}"
