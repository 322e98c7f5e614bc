"""
Utility functions for generating short, URL-safe identifiers.

File ids use base62 so that they stay short in URLs. Upload ids and share
tokens are bearer-style secrets and come straight from the secrets module.
"""
import secrets
import string


# Base62 character set: [0-9a-zA-Z]
BASE62_CHARS = string.digits + string.ascii_letters

UPLOAD_ID_PREFIX = "xenbox-"


def b62encode(num: int) -> str:
    """
    Encode a number to base62 string.

    Examples:
        >>> b62encode(12345)
        '3d7'
    """
    if num == 0:
        return BASE62_CHARS[0]

    base = len(BASE62_CHARS)
    encoded = []

    while num > 0:
        num, remainder = divmod(num, base)
        encoded.append(BASE62_CHARS[remainder])

    return "".join(reversed(encoded))


def generate_short_id(length: int = 12) -> str:
    """
    Generate a short, URL-safe ID using base62 encoding.

    Args:
        length: Length of the output string (default: 12 characters)

    Returns:
        Identifier made of [0-9a-zA-Z] characters

    Notes:
        - 12 characters provides ~71 bits of entropy
        - 128 random bits encode to 21-22 characters, longer ids are padded
    """
    num = int.from_bytes(secrets.token_bytes(16), byteorder="big")
    encoded = b62encode(num)

    if len(encoded) < length:
        padding = "".join(secrets.choice(BASE62_CHARS) for _ in range(length - len(encoded)))
        return encoded + padding

    return encoded[:length]


def generate_upload_id() -> str:
    """Opaque identifier for a chunked upload session."""
    return f"{UPLOAD_ID_PREFIX}{secrets.token_urlsafe(18)}"


def generate_share_token() -> str:
    """Unguessable token granting public access to a single file."""
    return secrets.token_urlsafe(24)
