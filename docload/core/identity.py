"""Identity assignment and per-iteration uniqueness.

Both functions are pure: the same inputs always give the same string, so a
VU keeps its patient for the whole run.
"""

from __future__ import annotations

from docload.core.models import IdentityMode
from docload.exceptions import ConfigurationError

DEFAULT_IDENTITY_PREFIX = "patient-"
DEFAULT_SHARED_SUFFIX = "1"


def resolve_identity(
    vu_index: int,
    mode: IdentityMode | str,
    *,
    prefix: str = DEFAULT_IDENTITY_PREFIX,
    shared_suffix: str = DEFAULT_SHARED_SUFFIX,
) -> str:
    """Map a VU index to the patient identity it acts as."""
    if vu_index < 1:
        raise ConfigurationError(
            "INVALID_VU_INDEX",
            f"VU index must be >= 1, got {vu_index}",
        )

    mode = IdentityMode.parse(mode)
    if mode is IdentityMode.SHARED:
        return f"{prefix}{shared_suffix}"
    return f"{prefix}{vu_index}"


def unique_suffix(vu_index: int, iteration: int) -> str:
    """Suffix unique to one (VU, iteration) pair across the whole run."""
    return f"{vu_index}-{iteration}"
