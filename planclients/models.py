from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class Tier(str, Enum):
    STANDARD = "standard"
    PREMIUM = "premium"


@dataclass(frozen=True)
class RegistryEntry:
    """One allocation line of the CIDR registry.

    Fields are kept exactly as written in the registry file so the validator can
    point at the offending text.
    """

    client_id: str
    address_block: str
    region: str = ""
    environment: str = ""
    allocated_date: str = ""
    notes: str = ""

    @property
    def label(self) -> str:
        return f"{self.client_id} ({self.address_block})"

    def to_dict(self) -> dict:
        return {
            "client_id": self.client_id,
            "address_block": self.address_block,
            "region": self.region,
            "environment": self.environment,
            "allocated_date": self.allocated_date,
            "notes": self.notes,
        }


@dataclass(frozen=True)
class ReservedRange:
    """Address space nobody may allocate (shared services, VPN pools, ...)."""

    cidr: str
    purpose: str = ""

    @property
    def address_block(self) -> str:
        return self.cidr

    @property
    def label(self) -> str:
        return f"reserved {self.purpose or 'range'} ({self.cidr})"

    def to_dict(self) -> dict:
        return {"cidr": self.cidr, "purpose": self.purpose}


@dataclass
class ClientRecord:
    """One onboarded client as declared in a layer's client table."""

    client_id: str
    enabled: bool = True
    tier: str = Tier.STANDARD.value
    address_block: Optional[str] = None
    region: str = ""
    environment: str = ""
    client_code: str = ""
    allowed_ports: list[int] = field(default_factory=list)
    metadata: dict = field(default_factory=dict)
