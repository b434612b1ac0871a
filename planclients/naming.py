"""Deterministic names and tags for every per-client resource.

Every layer derives names and tags through here so a client's VPC, cluster,
database and buckets all agree on what the client is called.
"""

import re
from typing import Optional

from .errors import FormatViolation

# lowercase words joined by single hyphens: "acme", "acme-corp", "us-east-2"
COMPONENT_PATTERN = re.compile(r"^[a-z0-9]+(-[a-z0-9]+)*$")
CLIENT_ID_CHARS = re.compile(r"^[a-z0-9-]+$")

DEFAULT_SEPARATOR = "--"
DEFAULT_MANAGED_BY = "Terraform"

# Standard tag keys, in the order they are emitted.
STANDARD_TAG_KEYS = (
    "Client",
    "ClientTier",
    "ClientCode",
    "CostCenter",
    "BusinessUnit",
    "Environment",
    "ManagedBy",
)

OBSERVABILITY_KINDS = ("logs", "traces", "metrics", "audit-logs")


def validate_client_id(client_id) -> str:
    """Return client_id unchanged, or raise FormatViolation.

    Anything outside [a-z0-9-] is refused, uppercase included. We never
    rewrite an identifier that resources are already named after.
    """
    if not isinstance(client_id, str) or not client_id:
        raise FormatViolation("client_id must be a non-empty string", "client_id", client_id)

    cid = client_id
    if not CLIENT_ID_CHARS.match(cid):
        raise FormatViolation(
            f"client_id {client_id!r} contains characters outside [a-z0-9-]",
            "client_id",
            client_id,
        )

    if not COMPONENT_PATTERN.match(cid):
        raise FormatViolation(
            f"client_id {client_id!r} must not start or end with '-' or contain '--'",
            "client_id",
            client_id,
        )

    return cid


def _component(value, field: str) -> str:
    if not isinstance(value, str) or not COMPONENT_PATTERN.match(value):
        raise FormatViolation(
            f"{field} {value!r} must be lowercase words joined by single hyphens",
            field,
            value,
        )
    return value


def name(
    client_id: str,
    environment: str,
    region: str,
    resource_kind: str,
    qualifier: Optional[str] = None,
    separator: str = DEFAULT_SEPARATOR,
) -> str:
    """Build a resource name, e.g. "acme--production--us-east-2--vpc".

    No component may contain the separator, so distinct inputs never collide.
    """
    parts = [
        validate_client_id(client_id),
        _component(environment, "environment"),
        _component(region, "region"),
        _component(resource_kind, "resource_kind"),
    ]
    if qualifier is not None:
        parts.append(_component(qualifier, "qualifier"))

    return separator.join(parts)


def merge_tags(*layers: Optional[dict]) -> dict:
    """Merge tag maps left to right; later maps win on key collision."""
    merged: dict[str, str] = {}
    for layer in layers:
        if not layer:
            continue
        merged.update(layer)
    return merged


class TagBuilder:
    """Layered tag composition with a fixed precedence.

    Layers are applied in the order they were added, so add the most generic
    (project-wide) tags first and the most specific (caller overrides) last.
    """

    def __init__(self, base: Optional[dict] = None):
        self._layers: list[tuple[str, dict]] = []
        if base:
            self.layer("base", base)

    def layer(self, label: str, tags: Optional[dict]) -> "TagBuilder":
        self._layers.append((label, dict(tags or {})))
        return self

    @property
    def labels(self) -> list[str]:
        return [label for label, _ in self._layers]

    def build(self) -> dict[str, str]:
        return merge_tags(*(tags for _, tags in self._layers))


def standard_tags(record, managed_by: str = DEFAULT_MANAGED_BY) -> dict[str, str]:
    metadata = record.metadata or {}
    return {
        "Client": validate_client_id(record.client_id),
        "ClientTier": record.tier,
        "ClientCode": record.client_code or record.client_id,
        "CostCenter": metadata.get("cost_center", ""),
        "BusinessUnit": metadata.get("business_unit", ""),
        "Environment": record.environment,
        "ManagedBy": managed_by,
    }


def tags(
    record,
    overrides: Optional[dict] = None,
    common: Optional[dict] = None,
    managed_by: str = DEFAULT_MANAGED_BY,
) -> dict[str, str]:
    """Canonical tag set for one client.

    Precedence, lowest first: common project tags, the standard client keys,
    the client's own metadata["tags"], then caller overrides.
    """
    metadata = record.metadata or {}
    return (
        TagBuilder()
        .layer("common", common)
        .layer("standard", standard_tags(record, managed_by=managed_by))
        .layer("metadata", metadata.get("tags"))
        .layer("overrides", overrides)
        .build()
    )


# ============================================================================
# Shared backend names
# ============================================================================
# One state bucket and one lock table serve every client, observability data
# is split per client by key prefix inside shared buckets.


def region_short(region: str) -> str:
    """us-east-2 => us-east"""
    return re.sub(r"-[0-9]+$", "", region)


def state_bucket_name(project: str, environment: str) -> str:
    return f"{_component(project, 'project')}-terraform-state-{_component(environment, 'environment')}"


def lock_table_name(region: str) -> str:
    return f"terraform-locks-{region_short(_component(region, 'region'))}"


def observability_bucket_name(project: str, region: str, kind: str, environment: str) -> str:
    if kind not in OBSERVABILITY_KINDS:
        raise FormatViolation(
            f"Unknown observability bucket kind {kind!r} (expected one of {OBSERVABILITY_KINDS})",
            "kind",
            kind,
        )
    return "-".join(
        [
            _component(project, "project"),
            _component(region, "region"),
            kind,
            _component(environment, "environment"),
        ]
    )


def client_prefix(kind: str, client_id: str) -> str:
    return f"{kind}/client={validate_client_id(client_id)}/"


def state_key(region: str, layer_dir: str, environment: str) -> str:
    return f"providers/aws/regions/{region}/layers/{layer_dir}/{environment}/terraform.tfstate"
