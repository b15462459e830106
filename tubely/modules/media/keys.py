"""Storage key derivation for uploaded assets.

Keys are 16 random bytes rendered as lowercase hex, optionally under a
classification prefix, with an extension taken from the media type:

    landscape/6f1c...9a0e.mp4
"""

import secrets
from typing import Callable

from tubely.core.errors import KeyGenerationError

KEY_ENTROPY_BYTES = 16

MEDIA_TYPE_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "video/mp4": "mp4",
}
DEFAULT_EXTENSION = "bin"


def media_type_to_extension(media_type: str) -> str:
    """Map a media type to a file extension, ``bin`` when unknown."""
    return MEDIA_TYPE_EXTENSIONS.get(media_type, DEFAULT_EXTENSION)


class AssetKeyGenerator:
    """Derives collision-resistant storage keys.

    Uniqueness is probabilistic (128 bits) and never checked against the store.
    """

    def __init__(self, random_source: Callable[[int], bytes] = secrets.token_bytes):
        """Initialize generator.

        Args:
            random_source: Callable returning n cryptographically secure bytes
        """
        self._random_source = random_source

    def generate(self, media_type: str, prefix: str = "") -> str:
        """Generate a storage key.

        Args:
            media_type: Declared media type, e.g. "video/mp4"
            prefix: Optional leading path segment

        Returns:
            Storage key

        Raises:
            ValueError: If media_type is empty
            KeyGenerationError: If the random source fails
        """
        if not media_type:
            raise ValueError("media_type must not be empty")

        try:
            raw = self._random_source(KEY_ENTROPY_BYTES)
        except Exception as e:
            raise KeyGenerationError("Couldn't generate random bytes for asset key", e) from e

        if len(raw) != KEY_ENTROPY_BYTES:
            raise KeyGenerationError(
                f"Random source returned {len(raw)} bytes, expected {KEY_ENTROPY_BYTES}"
            )

        name = f"{raw.hex()}.{media_type_to_extension(media_type)}"
        if prefix:
            return f"{prefix}/{name}"
        return name
