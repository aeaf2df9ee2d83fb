import secrets
import string

_ALPHABET = string.ascii_uppercase + string.digits


def _random_block(length: int = 12) -> str:
    """
    Return a random string of uppercase letters and digits.
    """
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def generate_id(prefix: str = "ID") -> str:
    """
    Generate a short primary key like 'ACC-1F2A9C3D7E0B' or 'BIZ-8K2L0P9QX1Z4'.

    Used as a SQLAlchemy column default through a lambda that supplies the
    table prefix, so it must also work when called with no arguments.
    """
    block = _random_block()
    if prefix:
        return f"{prefix}-{block}"
    return block
