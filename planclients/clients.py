"""Per-layer client tables (clients.auto.tfvars).

    clients = {
      acme = {
        enabled       = true
        tier          = "premium"
        client_code   = "ACM"
        vpc_cidr      = "10.2.0.0/16"    # foundation layer only
        allowed_ports = [443]
        metadata = {
          industry      = "retail"
          cost_center   = "CC-1001"
          business_unit = "commerce"
        }
      }
    }
"""

import json
import pathlib
from typing import Iterable, Optional

import hcl2
from loguru import logger

from .errors import FormatViolation
from .models import ClientRecord, Tier
from .naming import validate_client_id

TIERS = [t.value for t in Tier]


def _unwrap(value):
    """Undo python-hcl2 quirks: blocks wrapped in a list, string quotes kept."""
    if isinstance(value, list) and len(value) == 1 and isinstance(value[0], dict):
        value = value[0]
    if isinstance(value, str) and len(value) >= 2 and value[0] == value[-1] == '"':
        value = value[1:-1]
    return value


def _unwrap_map(value) -> dict:
    value = _unwrap(value)
    if not isinstance(value, dict):
        return {}
    out = {}
    for k, v in value.items():
        v = _unwrap(v)
        if isinstance(v, dict):
            v = _unwrap_map(v)
        elif isinstance(v, list):
            v = [_unwrap(x) for x in v]
        out[_unwrap(k)] = v
    return out


def _as_bool(client_id: str, value) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "false"):
        return value.lower() == "true"
    raise FormatViolation(f"{client_id}: enabled must be true or false, got {value!r}", "enabled", value)


def _as_ports(client_id: str, value) -> list[int]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise FormatViolation(f"{client_id}: allowed_ports must be a list", "allowed_ports", value)

    ports = []
    for p in value:
        try:
            port = int(p)
        except (TypeError, ValueError):
            raise FormatViolation(
                f"{client_id}: allowed_ports entry {p!r} is not a port number",
                "allowed_ports",
                p,
            ) from None
        if not 0 < port < 65536:
            raise FormatViolation(
                f"{client_id}: allowed_ports entry {port} is outside 1-65535",
                "allowed_ports",
                p,
            )
        ports.append(port)

    return ports


def record_from_dict(
    client_id: str, raw: dict, region: str = "", environment: str = ""
) -> ClientRecord:
    cid = validate_client_id(client_id)
    raw = _unwrap_map(raw)

    tier = str(raw.get("tier", Tier.STANDARD.value)).lower()
    if tier not in TIERS:
        raise FormatViolation(f"{cid}: tier must be one of {TIERS}, got {tier!r}", "tier", tier)

    block = raw.get("address_block", raw.get("vpc_cidr"))
    metadata = raw.get("metadata") or {}
    if not isinstance(metadata, dict):
        raise FormatViolation(f"{cid}: metadata must be a map", "metadata", metadata)

    return ClientRecord(
        client_id=cid,
        enabled=_as_bool(cid, raw.get("enabled", True)),
        tier=tier,
        address_block=str(block) if block else None,
        region=str(raw.get("region") or region),
        environment=str(raw.get("environment") or environment),
        client_code=str(raw.get("client_code") or ""),
        allowed_ports=_as_ports(cid, raw.get("allowed_ports")),
        metadata=metadata,
    )


def parse_client_table(
    data: dict, region: Optional[str] = None, environment: Optional[str] = None
) -> list[ClientRecord]:
    data = _unwrap_map(data)
    region = region or data.get("aws_region") or data.get("region") or ""
    environment = environment or data.get("environment") or ""

    clients = data.get("clients")
    if not isinstance(clients, dict):
        raise FormatViolation("Client table needs a top-level 'clients' map", "clients", clients)

    # sorted so every consumer sees clients in the same order
    return [
        record_from_dict(cid, clients[cid], region=region, environment=environment)
        for cid in sorted(clients)
    ]


def load_client_table(
    path, region: Optional[str] = None, environment: Optional[str] = None
) -> list[ClientRecord]:
    """Load a layer's client table from .tfvars (HCL) or .tfvars.json."""
    path = pathlib.Path(path)
    text = path.read_text()

    if path.suffix == ".json":
        data = json.loads(text)
    else:
        data = hcl2.loads(text)

    records = parse_client_table(data, region=region, environment=environment)
    logger.info(
        "[{}] Loaded {} clients ({} enabled)",
        path,
        len(records),
        len(enabled_clients(records)),
    )
    return records


def enabled_clients(records: Iterable[ClientRecord]) -> list[ClientRecord]:
    return [r for r in records if r.enabled]
