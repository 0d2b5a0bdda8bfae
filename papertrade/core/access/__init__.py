from papertrade.core.access.gate import (
    AccessGate,
    AuthenticationProvider,
    PinAuthenticationProvider,
    StaticAuthenticationProvider,
    hash_pin,
)

__all__ = [
    "AccessGate",
    "AuthenticationProvider",
    "PinAuthenticationProvider",
    "StaticAuthenticationProvider",
    "hash_pin",
]
