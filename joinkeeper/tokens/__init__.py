"""Join token codec."""

from .codec import (
    BOOTSTRAP_USERS,
    ClientConfig,
    ConfigurationError,
    DecodeError,
    ParseError,
    TokenCodecError,
    bootstrap_user,
    decode,
    encode,
    extract_token_id,
    replace_token_port,
    rewrite_port,
)

__all__ = [
    'BOOTSTRAP_USERS',
    'ClientConfig',
    'ConfigurationError',
    'DecodeError',
    'ParseError',
    'TokenCodecError',
    'bootstrap_user',
    'decode',
    'encode',
    'extract_token_id',
    'replace_token_port',
    'rewrite_port',
]
