import secrets
import string

ID_ALPHABET = string.ascii_lowercase + string.digits
ID_LENGTH = 8


def generate_id(prefix: str) -> str:
    """Build ``<prefix>_`` followed by 8 random lowercase base-36 characters"""
    suffix = "".join(secrets.choice(ID_ALPHABET) for _ in range(ID_LENGTH))
    return f"{prefix}_{suffix}"
