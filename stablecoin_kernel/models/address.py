"""Address canonicalization: one lower-case form for every key in the kernel."""

import re
from typing import Annotated, Iterable, List

from pydantic import AfterValidator

from stablecoin_kernel.errors import InvalidAddress

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def is_valid_address(value: str) -> bool:
    """True if ``value`` is a 0x-prefixed 20-byte hex address."""
    return isinstance(value, str) and bool(_ADDRESS_RE.match(value.strip()))


def normalize_address(value: str) -> str:
    """Return the canonical lower-case form, or raise InvalidAddress."""
    if not isinstance(value, str) or not _ADDRESS_RE.match(value.strip()):
        raise InvalidAddress(f"Invalid address format: {value!r}", address=str(value))
    return value.strip().lower()


def normalize_addresses(values: Iterable[str]) -> List[str]:
    """Canonicalize and deduplicate, preserving first-seen order."""
    seen = set()
    result = []
    for value in values:
        address = normalize_address(value)
        if address not in seen:
            seen.add(address)
            result.append(address)
    return result


def truncate_address(address: str, start_chars: int = 6, end_chars: int = 4) -> str:
    if len(address) <= start_chars + end_chars:
        return address
    return f"{address[:start_chars]}...{address[-end_chars:]}"


# Pydantic field type: validated and stored in canonical form.
Address = Annotated[str, AfterValidator(normalize_address)]
