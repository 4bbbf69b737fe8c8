# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Email address validation.

A pragmatic RFC 5322 subset: standard local-part symbols, multi-label
domains with a mandatory TLD, and the RFC 5321 length limits.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from typing import Any

MAX_ADDRESS_LENGTH = 254
MAX_LOCAL_PART_LENGTH = 64
MAX_DOMAIN_LENGTH = 253

EMAIL_PATTERN = re.compile(
    r"[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+"
    r"@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*"
)


def is_valid_email(address: Any) -> bool:
    """Return True when ``address`` is an acceptable email address."""
    if not address or not isinstance(address, str):
        return False
    if len(address) > MAX_ADDRESS_LENGTH:
        return False

    parts = address.split("@")
    if len(parts) != 2:
        return False
    local_part, domain = parts

    if not local_part or len(local_part) > MAX_LOCAL_PART_LENGTH:
        return False
    if not domain or len(domain) > MAX_DOMAIN_LENGTH:
        return False
    # TLD required
    if "." not in domain:
        return False
    if ".." in address:
        return False
    if domain.startswith(".") or domain.endswith("."):
        return False

    return EMAIL_PATTERN.fullmatch(address) is not None


def as_address_list(value: str | Sequence[str] | None) -> list[str]:
    """Normalise a single address or a list of addresses into a list."""
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return list(value)


def find_invalid_addresses(addresses: str | Sequence[str]) -> list[str]:
    """Validate one address or a list of addresses.

    Each entry is trimmed before validation. The entries that failed are
    returned as given; an empty list means every address is valid.
    """
    invalid: list[str] = []
    for address in as_address_list(addresses):
        candidate = address.strip() if isinstance(address, str) else address
        if not is_valid_email(candidate):
            invalid.append(address)
    return invalid
