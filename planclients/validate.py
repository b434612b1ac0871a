"""Allocation validation for the CIDR registry.

Validation only reports. It never rewrites the registry and never raises on bad
data: a non-empty report is the signal to stop before anything is provisioned.
"""

import itertools
from dataclasses import dataclass, field
from typing import Iterable, Union

from loguru import logger

from .addresses import describe_overlap, is_private, parse_block
from .errors import FormatViolation
from .models import RegistryEntry, ReservedRange
from .naming import validate_client_id

REQUIRED_FIELDS = ("client_id", "address_block")


@dataclass(frozen=True)
class FormatFinding:
    entry: Union[RegistryEntry, ReservedRange]
    field: str
    reason: str

    def __str__(self):
        who = getattr(self.entry, "client_id", None) or self.entry.label
        return f"{who}: {self.field}: {self.reason}"


@dataclass(frozen=True)
class OverlapFinding:
    first: RegistryEntry
    second: Union[RegistryEntry, ReservedRange]
    description: str
    duplicate: bool = False

    def involves(self, entry: RegistryEntry) -> bool:
        return entry in (self.first, self.second)

    def __str__(self):
        kind = "DUPLICATE" if self.duplicate else "OVERLAP"
        return f"{kind}: {self.first.label} <-> {self.second.label}: {self.description}"


@dataclass(frozen=True)
class PrivateRangeFinding:
    entry: RegistryEntry
    reason: str

    def __str__(self):
        return f"{self.entry.label}: {self.reason}"


@dataclass(frozen=True)
class DuplicateClientFinding:
    client_id: str
    entries: tuple

    def __str__(self):
        blocks = ", ".join(e.address_block for e in self.entries)
        return f"{self.client_id} is allocated {len(self.entries)} times ({blocks})"


@dataclass
class ValidationReport:
    total: int = 0
    format_violations: list[FormatFinding] = field(default_factory=list)
    overlaps: list[OverlapFinding] = field(default_factory=list)
    private_range_violations: list[PrivateRangeFinding] = field(default_factory=list)
    duplicate_clients: list[DuplicateClientFinding] = field(default_factory=list)

    @property
    def violation_count(self) -> int:
        return (
            len(self.format_violations)
            + len(self.overlaps)
            + len(self.private_range_violations)
            + len(self.duplicate_clients)
        )

    @property
    def ok(self) -> bool:
        return self.violation_count == 0

    def findings_for(self, entry: RegistryEntry) -> list:
        found = [f for f in self.format_violations if f.entry == entry]
        found += [f for f in self.overlaps if f.involves(entry)]
        found += [f for f in self.private_range_violations if f.entry == entry]
        found += [f for f in self.duplicate_clients if entry in f.entries]
        return found

    def render(self) -> str:
        """Human-readable report, one finding per line."""
        lines = [f"Scanned {self.total} registry entries"]

        sections = [
            ("Format violations", self.format_violations),
            ("Duplicate or overlapping allocations", self.overlaps),
            ("Allocations outside private (RFC 1918) space", self.private_range_violations),
            ("Clients allocated more than once", self.duplicate_clients),
        ]
        for title, findings in sections:
            if not findings:
                continue
            lines.append("")
            lines.append(f"{title} ({len(findings)}):")
            lines.extend(f"  - {f}" for f in findings)

        lines.append("")
        if self.ok:
            lines.append("PASSED: no overlaps, all CIDRs well-formed and private")
        else:
            lines.append(f"FAILED: {self.violation_count} violation(s), do not apply any layer")

        return "\n".join(lines)


def validate(
    entries: Iterable[RegistryEntry], reserved: Iterable[ReservedRange] = ()
) -> ValidationReport:
    """Check every allocation for format, uniqueness, overlap and private space."""
    entries = list(entries)
    report = ValidationReport(total=len(entries))

    # ================================================================================
    # 1. Format, each entry on its own
    # ================================================================================
    parsed = []
    for entry in entries:
        problems = []
        for name in REQUIRED_FIELDS:
            if not getattr(entry, name):
                problems.append(FormatFinding(entry, name, "missing"))

        if entry.client_id:
            try:
                validate_client_id(entry.client_id)
            except FormatViolation as e:
                problems.append(FormatFinding(entry, "client_id", str(e)))

        network = None
        if entry.address_block:
            try:
                network = parse_block(entry.address_block)
            except FormatViolation as e:
                problems.append(FormatFinding(entry, "address_block", str(e)))

        report.format_violations.extend(problems)

        # malformed blocks can't be compared against anything
        if network is not None:
            parsed.append((entry, network))
            if not is_private(network):
                report.private_range_violations.append(
                    PrivateRangeFinding(
                        entry,
                        f"{network} is outside 10.0.0.0/8, 172.16.0.0/12 and 192.168.0.0/16",
                    )
                )

    # ================================================================================
    # 2 + 3. Duplicates and numeric overlap, every pair once
    # ================================================================================
    for (a, na), (b, nb) in itertools.combinations(parsed, 2):
        if na.overlaps(nb):
            report.overlaps.append(
                OverlapFinding(a, b, describe_overlap(na, nb), duplicate=na == nb)
            )

    for r in reserved:
        try:
            nr = parse_block(r.cidr, field="reserved cidr")
        except FormatViolation as e:
            report.format_violations.append(FormatFinding(r, "cidr", str(e)))
            continue

        for entry, network in parsed:
            if network.overlaps(nr):
                report.overlaps.append(
                    OverlapFinding(entry, r, describe_overlap(network, nr), duplicate=network == nr)
                )

    # ================================================================================
    # Client ids are unique across the whole system
    # ================================================================================
    by_client: dict[str, list[RegistryEntry]] = {}
    for entry in entries:
        if entry.client_id:
            by_client.setdefault(entry.client_id.lower(), []).append(entry)

    for client_id, allocated in by_client.items():
        if len(allocated) > 1:
            report.duplicate_clients.append(DuplicateClientFinding(client_id, tuple(allocated)))

    logger.info(
        "Validated {} entries: {} format, {} overlap, {} non-private, {} duplicate client",
        report.total,
        len(report.format_violations),
        len(report.overlaps),
        len(report.private_range_violations),
        len(report.duplicate_clients),
    )

    return report
