"""The CIDR registry: the one place client VPC blocks are handed out.

The file is append-only. Allocations go through Registry.allocate(), which
re-validates the whole registry plus the new entry under a lock before writing,
so two allocations can never land on the same address space.
"""

import datetime
import ipaddress
import itertools
import os
import pathlib
from typing import Optional

import yaml
from loguru import logger

from .addresses import parse_block
from .errors import (
    FormatViolation,
    InsufficientAddressSpace,
    OverlapViolation,
    PrivateRangeViolation,
    RegistryError,
)
from .locking import StateLock
from .models import RegistryEntry, ReservedRange
from .validate import FormatFinding, OverlapFinding, PrivateRangeFinding, validate


def _text(value) -> str:
    # YAML turns 2025-01-15 into a date and bare numbers into ints
    if value is None:
        return ""
    if isinstance(value, (datetime.date, datetime.datetime)):
        return value.isoformat()
    return str(value)


def _entry_from_dict(raw: dict, position: int) -> RegistryEntry:
    if not isinstance(raw, dict):
        raise RegistryError(f"allocations[{position}] must be a mapping, got {type(raw).__name__}")

    # older registries call the block "vpc_cidr"
    block = raw.get("address_block", raw.get("vpc_cidr"))
    return RegistryEntry(
        client_id=_text(raw.get("client_id", raw.get("client"))),
        address_block=_text(block),
        region=_text(raw.get("region")),
        environment=_text(raw.get("environment")),
        allocated_date=_text(raw.get("allocated_date")),
        notes=_text(raw.get("notes")),
    )


class Registry:
    def __init__(
        self,
        path,
        entries: Optional[list[RegistryEntry]] = None,
        reserved: Optional[list[ReservedRange]] = None,
    ):
        self.path = pathlib.Path(path)
        self.entries = list(entries or [])
        self.reserved = list(reserved or [])

    def __len__(self):
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)

    def get(self, client_id: str) -> Optional[RegistryEntry]:
        for e in self.entries:
            if e.client_id == client_id:
                return e
        return None

    def validate(self):
        return validate(self.entries, self.reserved)

    def next_free_block(
        self, prefix: int = 16, pool: str = "10.0.0.0/8", start_offset: int = 0
    ) -> ipaddress.IPv4Network:
        """First /prefix in pool (after start_offset blocks) nobody has touched."""
        supernet = parse_block(pool, field="pool")
        taken = []
        for item in [*self.entries, *self.reserved]:
            try:
                taken.append(parse_block(item.address_block))
            except FormatViolation:
                # malformed entries are the validator's problem, not ours
                continue

        for candidate in itertools.islice(supernet.subnets(new_prefix=prefix), start_offset, None):
            if not any(candidate.overlaps(t) for t in taken):
                return candidate

        raise InsufficientAddressSpace(f"No free /{prefix} left in {pool}")

    def allocate(self, entry: RegistryEntry) -> RegistryEntry:
        """Check-and-insert one allocation.

        Raises the matching violation (and writes nothing) if the new entry is
        malformed, non-private, or collides with anything already allocated.
        Pre-existing problems not involving the new entry don't block it; they
        show up in the validator report instead.
        """
        with StateLock(self.path):
            # re-read under the lock, someone may have allocated meanwhile
            if self.path.is_file():
                current = load_registry(self.path)
                self.entries = current.entries
                self.reserved = current.reserved

            existing = self.get(entry.client_id)
            if existing is not None:
                raise OverlapViolation(
                    f"{entry.client_id} already has an allocation: {existing.address_block}"
                )

            if not entry.allocated_date:
                entry = RegistryEntry(
                    **{**entry.to_dict(), "allocated_date": datetime.date.today().isoformat()}
                )

            report = validate([*self.entries, entry], self.reserved)
            problems = report.findings_for(entry)

            formats = [p for p in problems if isinstance(p, FormatFinding)]
            if formats:
                first = formats[0]
                raise FormatViolation(str(first), field=first.field)

            privates = [p for p in problems if isinstance(p, PrivateRangeFinding)]
            if privates:
                raise PrivateRangeViolation(str(privates[0]))

            overlaps = [p for p in problems if isinstance(p, OverlapFinding)]
            if overlaps:
                raise OverlapViolation(
                    f"{entry.label} collides with: "
                    + "; ".join(str(o) for o in overlaps),
                    findings=overlaps,
                )

            self.entries.append(entry)
            self.save()

        logger.info("[{}] Allocated {} to {}", self.path, entry.address_block, entry.client_id)
        return entry

    def to_dict(self) -> dict:
        return {
            "allocations": [e.to_dict() for e in self.entries],
            "reserved": [r.to_dict() for r in self.reserved],
        }

    def save(self):
        tmp = self.path.with_name(self.path.name + ".tmp")
        tmp.write_text(
            "# CIDR registry: ONLY APPEND. Never edit or reuse an allocated block.\n"
            + yaml.safe_dump(self.to_dict(), sort_keys=False, default_flow_style=False)
        )
        os.replace(tmp, self.path)
        logger.info("[{}] Saved registry ({} allocations)", self.path, len(self.entries))


def load_registry(path) -> Registry:
    path = pathlib.Path(path)
    if not path.is_file():
        raise RegistryError(f"CIDR registry not found: {path}")

    try:
        data = yaml.safe_load(path.read_text())
    except yaml.YAMLError as e:
        raise RegistryError(f"[{path}] Not valid YAML: {e}") from e

    if data is None:
        data = {}

    if not isinstance(data, dict):
        raise RegistryError(f"[{path}] Registry root must be a mapping, got {type(data).__name__}")

    allocations = data.get("allocations") or []
    reserved = data.get("reserved") or []
    for key, value in (("allocations", allocations), ("reserved", reserved)):
        if not isinstance(value, list):
            raise RegistryError(f"[{path}] '{key}' must be a list")

    entries = [_entry_from_dict(raw, n) for n, raw in enumerate(allocations)]

    reserved_ranges = []
    for n, raw in enumerate(reserved):
        if not isinstance(raw, dict):
            raise RegistryError(f"[{path}] reserved[{n}] must be a mapping")
        reserved_ranges.append(
            ReservedRange(cidr=_text(raw.get("cidr")), purpose=_text(raw.get("purpose")))
        )

    logger.info(
        "[{}] Loaded {} allocations, {} reserved ranges",
        path,
        len(entries),
        len(reserved_ranges),
    )

    return Registry(path, entries, reserved_ranges)
