"""Per-client subnet derivation.

A client's VPC block is split into purpose tiers (public, platform, database,
compute), one subnet per tier per availability zone. Every subnet is a fixed
binary subdivision of the VPC block, so the same block and zones always give the
same subnets with no state kept anywhere.
"""

import ipaddress
import json
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from . import myclients
from .addresses import is_private, parse_block
from .errors import (
    InsufficientAddressSpace,
    InvalidZoneCount,
    PrivateRangeViolation,
    TierLayoutError,
)

MIN_ZONES = 2
MIN_SUBNET_PREFIX = myclients.MIN_SUBNET_PREFIX


@dataclass(frozen=True)
class TierSpec:
    """Zone N of this tier is subnet number (offset + N) of the VPC widened by `widen` bits."""

    name: str
    widen: int
    offset: int

    def span(self, zone_count: int, finest: int) -> tuple[int, int]:
        """[start, end) of this tier measured in subnets of `finest` extra bits."""
        scale = 1 << (finest - self.widen)
        return self.offset * scale, (self.offset + zone_count) * scale


class TierLayout:
    def __init__(self, tiers: Iterable):
        self.tiers = tuple(t if isinstance(t, TierSpec) else TierSpec(*t) for t in tiers)

        names = [t.name for t in self.tiers]
        if len(set(names)) != len(names):
            raise TierLayoutError(f"Tier names must be unique: {names}")

        for t in self.tiers:
            if t.widen < 1 or t.offset < 0:
                raise TierLayoutError(f"Tier {t.name} needs widen >= 1 and offset >= 0: {t}")

    @property
    def names(self) -> list[str]:
        return [t.name for t in self.tiers]

    @property
    def max_widen(self) -> int:
        return max(t.widen for t in self.tiers)

    def max_zones(self) -> int:
        """Largest zone count this layout can hold without collisions."""
        n = 0
        while n < 256:
            try:
                self.check(n + 1)
            except (TierLayoutError, InsufficientAddressSpace):
                break
            n += 1
        return n

    def check(self, zone_count: int):
        """Prove the tiers can't collide for this many zones.

        Tiers are compared as index ranges at the finest granularity any tier
        uses, which doesn't depend on the VPC block itself. One check covers every
        client using this layout.
        """
        finest = self.max_widen
        spans = []
        for t in self.tiers:
            start, end = t.span(zone_count, finest)
            if end > (1 << finest):
                raise InsufficientAddressSpace(
                    f"Tier {t.name} needs subnets {t.offset}..{t.offset + zone_count - 1} "
                    f"but only {1 << t.widen} /+{t.widen} subnets fit in a VPC "
                    f"({zone_count} zones)"
                )
            spans.append((start, end, t))

        spans.sort(key=lambda s: s[0])
        for (s1, e1, t1), (s2, e2, t2) in zip(spans, spans[1:]):
            if s2 < e1:
                raise TierLayoutError(
                    f"Tier {t1.name} and tier {t2.name} overlap with {zone_count} zones"
                )


@dataclass(frozen=True)
class DerivedSubnet:
    tier: str
    cidr: str
    availability_zone: str
    zone_index: int

    def astuple(self) -> tuple[str, str, str]:
        return (self.tier, self.cidr, self.availability_zone)


@dataclass(frozen=True)
class DerivedSubnetSet:
    address_block: str
    availability_zones: tuple
    subnets: tuple

    def __iter__(self):
        return iter(self.subnets)

    def __len__(self):
        return len(self.subnets)

    def for_tier(self, tier: str) -> list[str]:
        return [s.cidr for s in self.subnets if s.tier == tier]

    def by_tier(self) -> dict[str, list[str]]:
        out: dict[str, list[str]] = {}
        for s in self.subnets:
            out.setdefault(s.tier, []).append(s.cidr)
        return out

    def to_dict(self) -> dict:
        return {
            "address_block": self.address_block,
            "availability_zones": list(self.availability_zones),
            "subnets": [
                {"tier": s.tier, "cidr": s.cidr, "availability_zone": s.availability_zone}
                for s in self.subnets
            ],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=4)


DEFAULT_LAYOUT = TierLayout(myclients.TIER_LAYOUT)


def _nth_subnet(parent: ipaddress.IPv4Network, new_prefix: int, n: int) -> ipaddress.IPv4Network:
    base = int(parent.network_address) + (n << (32 - new_prefix))
    return ipaddress.IPv4Network((base, new_prefix))


def derive(
    address_block: str,
    availability_zones: Sequence[str],
    layout: Optional[TierLayout] = None,
    min_subnet_prefix: int = MIN_SUBNET_PREFIX,
) -> DerivedSubnetSet:
    """Partition a client VPC block into one subnet per tier per zone.

    Ordered by tier (layout order), then zone index.
    """
    layout = layout or DEFAULT_LAYOUT

    parent = parse_block(address_block)
    if not is_private(parent):
        raise PrivateRangeViolation(f"{parent} is not in private (RFC 1918) address space")

    zones = list(availability_zones or [])
    if len(zones) < MIN_ZONES:
        raise InvalidZoneCount(f"Need at least {MIN_ZONES} availability zones, got {zones}")
    if len(set(zones)) != len(zones) or not all(isinstance(z, str) and z for z in zones):
        raise InvalidZoneCount(f"Availability zones must be distinct non-empty names: {zones}")

    if parent.prefixlen + layout.max_widen > min_subnet_prefix:
        raise InsufficientAddressSpace(
            f"{parent} is too small: tiers widen by up to {layout.max_widen} bits "
            f"and subnets can't be smaller than /{min_subnet_prefix} "
            f"(need /{min_subnet_prefix - layout.max_widen} or larger)"
        )

    layout.check(len(zones))

    subnets = []
    for tier in layout.tiers:
        new_prefix = parent.prefixlen + tier.widen
        for i, zone in enumerate(zones):
            subnet = _nth_subnet(parent, new_prefix, tier.offset + i)
            subnets.append(DerivedSubnet(tier.name, str(subnet), zone, i))

    return DerivedSubnetSet(str(parent), tuple(zones), tuple(subnets))
