"""Contracts between the six provisioning layers.

Layers apply strictly in order and each one only reads what earlier layers
published:

    foundation -> platform -> database -> compute -> cluster-services -> observability

Before a layer is applied every enabled client must have every upstream field
the layer reads. One missing field for one client fails the whole layer: we'd
rather provision nothing than leave a client half isolated.
"""

import datetime
import json
import pathlib
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Iterable, Mapping, Optional

from loguru import logger

from .errors import LayerContractError, MissingUpstreamReference
from .locking import StateLock


class Layer(IntEnum):
    FOUNDATION = 1
    PLATFORM = 2
    DATABASE = 3
    COMPUTE = 4
    CLUSTER_SERVICES = 5
    OBSERVABILITY = 6

    @property
    def slug(self) -> str:
        return self.name.lower().replace("_", "-")

    @property
    def directory(self) -> str:
        return f"{self.value:02d}-{self.slug}"

    @classmethod
    def parse(cls, value) -> "Layer":
        """Accept a Layer, its number, its slug ("cluster-services") or its directory ("05-cluster-services")."""
        if isinstance(value, cls):
            return value
        if isinstance(value, int):
            return cls(value)

        text = str(value).strip().lower()
        for layer in cls:
            if text in (layer.slug, layer.directory, layer.name.lower(), str(layer.value)):
                return layer

        raise ValueError(f"Unknown layer {value!r}, expected one of {[l.slug for l in cls]}")


@dataclass(frozen=True)
class LayerContract:
    """What a layer publishes per client, and what it reads from each upstream layer."""

    layer: Layer
    publishes: tuple[str, ...]
    requires: Mapping[Layer, tuple[str, ...]] = field(default_factory=dict)
    version: int = 1
    min_upstream_version: int = 1

    def __post_init__(self):
        for upstream in self.requires:
            if upstream >= self.layer:
                raise LayerContractError(
                    f"{self.layer.slug} can't read from {upstream.slug}: layers only read earlier layers"
                )

    @property
    def upstream_layers(self) -> list[Layer]:
        """Layers that must have published first: those read from, plus the one just before."""
        layers = set(self.requires)
        if self.layer > Layer.FOUNDATION:
            layers.add(Layer(self.layer - 1))
        return sorted(layers)


CONTRACTS: dict[Layer, LayerContract] = {
    c.layer: c
    for c in [
        LayerContract(
            Layer.FOUNDATION,
            publishes=(
                "vpc_id",
                "vpc_cidr",
                "public_subnet_ids",
                "platform_subnet_ids",
                "database_subnet_ids",
                "compute_subnet_ids",
            ),
        ),
        LayerContract(
            Layer.PLATFORM,
            publishes=(
                "cluster_name",
                "cluster_endpoint",
                "cluster_security_group_id",
                "oidc_provider_arn",
            ),
            requires={Layer.FOUNDATION: ("vpc_id", "platform_subnet_ids")},
        ),
        LayerContract(
            Layer.DATABASE,
            publishes=("db_endpoint", "db_security_group_id"),
            requires={
                Layer.FOUNDATION: ("vpc_id", "vpc_cidr", "database_subnet_ids"),
                Layer.PLATFORM: ("cluster_security_group_id",),
            },
        ),
        LayerContract(
            Layer.COMPUTE,
            publishes=("instance_security_group_id",),
            requires={Layer.FOUNDATION: ("vpc_id", "compute_subnet_ids")},
        ),
        LayerContract(
            Layer.CLUSTER_SERVICES,
            publishes=("dns_zone_id", "external_dns_role_arn"),
            requires={
                Layer.PLATFORM: ("cluster_name", "cluster_endpoint", "oidc_provider_arn"),
            },
        ),
        LayerContract(
            Layer.OBSERVABILITY,
            publishes=("logs_prefix", "metrics_prefix", "traces_prefix"),
            requires={
                Layer.PLATFORM: ("cluster_name", "cluster_endpoint"),
                Layer.CLUSTER_SERVICES: ("dns_zone_id",),
            },
        ),
    ]
}


@dataclass
class LayerOutput:
    """What one layer published: a map of client_id => {field: value}."""

    layer: Layer
    environment: str
    clients: dict[str, dict] = field(default_factory=dict)
    version: int = 1
    published_at: str = ""

    def to_dict(self) -> dict:
        return {
            "layer": self.layer.slug,
            "environment": self.environment,
            "version": self.version,
            "published_at": self.published_at,
            "clients": self.clients,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LayerOutput":
        if not isinstance(data, dict) or "layer" not in data:
            raise LayerContractError(f"Layer output must be a map with a 'layer' key, got {data!r:.80}")

        try:
            layer = Layer.parse(data["layer"])
        except ValueError as e:
            raise LayerContractError(str(e)) from None

        return cls(
            layer=layer,
            environment=data.get("environment", ""),
            clients=client_outputs(layer, data.get("clients") or {}),
            version=int(data.get("version", 1)),
            published_at=data.get("published_at", ""),
        )


def client_outputs(layer: Layer, clients) -> dict[str, dict]:
    """Check the shape client_id => {field: value}, or raise LayerContractError."""
    if not isinstance(clients, dict):
        raise LayerContractError(
            f"{layer.slug}: outputs must map client_id to a map of fields, got {type(clients).__name__}"
        )

    for cid, values in clients.items():
        if not isinstance(values, dict):
            raise LayerContractError(
                f"{layer.slug}: client {cid} output must be a map of fields, got {type(values).__name__}"
            )

    return dict(clients)


def _enabled_ids(clients: Iterable) -> list[str]:
    """Accept ClientRecords or plain ids."""
    ids = []
    for c in clients:
        if isinstance(c, str):
            ids.append(c)
        elif getattr(c, "enabled", True):
            ids.append(c.client_id)
    return ids


def missing_references(
    layer, clients: Iterable, upstream: Mapping[Layer, Optional[LayerOutput]]
) -> list[str]:
    """Every upstream gap that would stop `layer` from applying, for every enabled client."""
    layer = Layer.parse(layer)
    contract = CONTRACTS[layer]
    client_ids = _enabled_ids(clients)

    missing = []
    for up in contract.upstream_layers:
        fields = contract.requires.get(up, ())
        output = upstream.get(up)
        if output is None:
            missing.append(f"{up.slug}: no published output")
            continue

        if output.version < contract.min_upstream_version:
            missing.append(
                f"{up.slug}: output version {output.version} is older than required {contract.min_upstream_version}"
            )

        for cid in client_ids:
            published = output.clients.get(cid) if isinstance(output.clients, dict) else None
            if published is None:
                missing.append(f"{up.slug}: client {cid} not published")
                continue
            if not isinstance(published, dict):
                missing.append(f"{up.slug}: client {cid} output is not a map of fields")
                continue

            for f in fields:
                if published.get(f) in (None, "", []):
                    missing.append(f"{up.slug}: client {cid} is missing {f}")

    return missing


def check_preconditions(layer, clients: Iterable, upstream: Mapping[Layer, Optional[LayerOutput]]):
    """Raise MissingUpstreamReference listing every gap, or return quietly."""
    layer = Layer.parse(layer)
    missing = missing_references(layer, clients, upstream)
    if missing:
        logger.error("[{}] {} upstream reference(s) missing", layer.slug, len(missing))
        raise MissingUpstreamReference(layer.slug, missing)

    logger.info("[{}] All upstream references present", layer.slug)


class LayerStateStore:
    """Published layer outputs on disk.

    <root>/<region>/layers/<NN-layer>/<environment>/outputs.json
    """

    def __init__(self, root, region: str):
        self.root = pathlib.Path(root)
        self.region = region

    def path(self, layer, environment: str) -> pathlib.Path:
        layer = Layer.parse(layer)
        return self.root / self.region / "layers" / layer.directory / environment / "outputs.json"

    def load(self, layer, environment: str) -> Optional[LayerOutput]:
        p = self.path(layer, environment)
        if not p.is_file():
            return None

        return LayerOutput.from_dict(json.loads(p.read_text()))

    def upstream(self, layer, environment: str) -> dict[Layer, Optional[LayerOutput]]:
        layer = Layer.parse(layer)
        return {up: self.load(up, environment) for up in CONTRACTS[layer].upstream_layers}

    def check(self, layer, environment: str, clients: Iterable):
        check_preconditions(layer, clients, self.upstream(layer, environment))

    def publish(self, output: LayerOutput, allow_removal: bool = False) -> pathlib.Path:
        """Write one layer's output under the state lock.

        Outputs are append-stable: dropping a client or field that downstream
        layers may read is refused unless allow_removal is set.
        """
        contract = CONTRACTS[output.layer]
        output.clients = client_outputs(output.layer, output.clients)
        for cid, values in output.clients.items():
            absent = [f for f in contract.publishes if f not in values]
            if absent:
                raise LayerContractError(
                    f"{output.layer.slug}: client {cid} is missing published field(s) {absent}"
                )

        p = self.path(output.layer, output.environment)
        with StateLock(p):
            previous = self.load(output.layer, output.environment)
            if previous is not None and not allow_removal:
                removed = []
                for cid, values in previous.clients.items():
                    if cid not in output.clients:
                        removed.append(f"client {cid}")
                        continue
                    removed += [
                        f"{cid}.{f}" for f in values if f not in output.clients[cid]
                    ]

                if removed:
                    raise LayerContractError(
                        f"{output.layer.slug}: refusing to remove published keys {removed} "
                        "(downstream layers may read them; pass allow_removal=True)"
                    )

            output.version = max(output.version, contract.version)
            output.published_at = datetime.datetime.now(datetime.timezone.utc).isoformat()

            p.parent.mkdir(parents=True, exist_ok=True)
            tmp = p.with_name(p.name + ".tmp")
            tmp.write_text(json.dumps(output.to_dict(), indent=4, sort_keys=True))
            tmp.replace(p)

        logger.info(
            "[{}] Published {} output for {} client(s)",
            p,
            output.layer.slug,
            len(output.clients),
        )
        return p
