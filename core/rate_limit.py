from slowapi import Limiter
from slowapi.util import get_remote_address


def build_limiter(default_limit: str, enabled: bool = True) -> Limiter:
    return Limiter(
        key_func=get_remote_address,
        default_limits=[default_limit],
        enabled=enabled,
    )
