"""Seed address loading for sync runs without an explicit address list."""

import csv
import logging
from pathlib import Path
from typing import List, Optional

from stablecoin_kernel.models.address import is_valid_address, normalize_addresses
from stablecoin_kernel.models.config import KernelConfig

logger = logging.getLogger(__name__)


def read_address_csv(path: Path, allowed_column: Optional[str] = None) -> List[str]:
    """
    Read addresses from a CSV file.

    Uses the ``address`` column when a header names one, otherwise the first
    column. Rows with malformed addresses are skipped. When ``allowed_column``
    is present in the header, only rows whose value is ``true`` are kept.
    """
    addresses: List[str] = []
    with path.open("r", encoding="utf-8", newline="") as file:
        rows = [row for row in csv.reader(file) if row and any(cell.strip() for cell in row)]
    if not rows:
        return addresses

    header = [cell.strip().lower() for cell in rows[0]]
    address_index = 0
    allowed_index = None
    if "address" in header:
        address_index = header.index("address")
        if allowed_column and allowed_column in header:
            allowed_index = header.index(allowed_column)
        rows = rows[1:]

    skipped = 0
    for row in rows:
        value = row[address_index].strip() if len(row) > address_index else ""
        if not is_valid_address(value):
            skipped += 1
            continue
        if allowed_index is not None:
            flag = row[allowed_index].strip().lower() if len(row) > allowed_index else ""
            if flag != "true":
                continue
        addresses.append(value)

    if skipped:
        logger.warning("Skipped %d malformed rows in %s", skipped, path)
    return normalize_addresses(addresses)


def load_seed_addresses(config: KernelConfig) -> List[str]:
    """Seed CSV if it exists, else the SEED_ADDRESSES list from config."""
    path = Path(config.seed_csv_path)
    if path.is_file():
        addresses = read_address_csv(path)
        logger.info("Loaded %d seed addresses from %s", len(addresses), path)
        return addresses

    valid = [a for a in config.seed_addresses if is_valid_address(a)]
    if len(valid) != len(config.seed_addresses):
        logger.warning(
            "Ignored %d malformed SEED_ADDRESSES entries", len(config.seed_addresses) - len(valid)
        )
    return normalize_addresses(valid)
