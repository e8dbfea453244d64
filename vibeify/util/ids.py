import secrets

MIN_TOKEN_BYTES = 8
SESSION_ID_BYTES = 16


def random_token(byte_length: int = SESSION_ID_BYTES) -> str:
    """Return ``byte_length`` bytes from the OS CSPRNG as lowercase hex."""
    if byte_length < MIN_TOKEN_BYTES:
        raise ValueError(f"token must be at least {MIN_TOKEN_BYTES} bytes")
    return secrets.token_hex(byte_length)
