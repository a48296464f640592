from __future__ import annotations

# Tenant identifiers downstream are limited in length; keys are cut to this size.
ISOLATION_KEY_MAX_LENGTH = 30


def derive_isolation_key(class_name: str, method_name: str, max_length: int = ISOLATION_KEY_MAX_LENGTH) -> str:
    # Deterministic "<Class>_<method>" truncated to max_length. Long shared prefixes can collide.
    if max_length <= 0:
        raise ValueError("max_length must be > 0")
    return f"{class_name}_{method_name}"[:max_length]
