#!/usr/bin/env python

import hashlib
import importlib.util
import json
import pathlib
import sys
from types import ModuleType
from typing import Optional

import pandas as pd
from loguru import logger

from . import myclients as bundled_config
from . import naming
from .backend import BackendBootstrap
from .clients import enabled_clients, load_client_table
from .errors import LayerContractError, PlannerError, RegistryError
from .layers import Layer, LayerOutput, LayerStateStore
from .models import RegistryEntry
from .registry import Registry, load_registry
from .subnets import TierLayout, derive
from .zones import ZoneCatalog


def _load_user_config(path) -> Optional[ModuleType]:
    path = pathlib.Path(path)
    if not path.is_file():
        return None

    spec = importlib.util.spec_from_file_location("myclients", path)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    logger.info("[{}] Loaded user config", path)
    return module


def _as_list(value) -> Optional[list[str]]:
    # fire hands us "a,b" as a str and [a,b] as a list/tuple
    if value is None:
        return None
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    return [str(v) for v in value]


class ClientPlanner:
    """Validate client CIDR allocations and plan every client's subnets, names and tags."""

    def __init__(
        self,
        registry: str = None,
        clients: str = None,
        region: str = None,
        environment: str = None,
        state_root: str = None,
        config: str = "myclients.py",
        plan_result: str = None,
        zones_cache: str = None,
    ):
        self._establish_config(config, registry, state_root, plan_result, zones_cache)

        self.clients_file = clients
        self.region = region
        self.environment = environment

    def _establish_config(self, config, registry, state_root, plan_result, zones_cache):
        """Process combination of command line arguments, config file settings, and defaults."""

        # Three levels, highest wins:
        #   - command line arguments
        #   - the user's myclients.py in the working directory
        #   - the bundled planclients/myclients.py
        user = _load_user_config(config)

        def setting(name, explicit=None):
            if explicit is not None:
                return explicit
            if user is not None and hasattr(user, name):
                return getattr(user, name)
            return getattr(bundled_config, name)

        self.REGISTRY_PATH = pathlib.Path(setting("REGISTRY_PATH", registry))
        self.ALLOCATION_POOL = setting("ALLOCATION_POOL")
        self.ALLOCATION_PREFIX = setting("ALLOCATION_PREFIX")
        self.START_OFFSET = setting("START_OFFSET")
        self.AVAILABILITY_ZONE_COUNT = setting("AVAILABILITY_ZONE_COUNT")
        self.MIN_SUBNET_PREFIX = setting("MIN_SUBNET_PREFIX")
        self.TIER_LAYOUT = TierLayout(setting("TIER_LAYOUT"))
        self.NAME_SEPARATOR = setting("NAME_SEPARATOR")
        self.MANAGED_BY = setting("MANAGED_BY")
        self.COMMON_TAGS = setting("COMMON_TAGS")
        self.STATE_ROOT = pathlib.Path(setting("STATE_ROOT", state_root))
        self.PLAN_RESULT = pathlib.Path(setting("PLAN_RESULT", plan_result))
        self.ZONES_CACHE = setting("ZONES_CACHE", zones_cache)

        logger.info(
            "Configuring with REGISTRY_PATH={} ALLOCATION_POOL={} ALLOCATION_PREFIX={} START_OFFSET={}",
            self.REGISTRY_PATH,
            self.ALLOCATION_POOL,
            self.ALLOCATION_PREFIX,
            self.START_OFFSET,
        )

        logger.info(
            "Configuring with AVAILABILITY_ZONE_COUNT={} TIER_LAYOUT={} (max {} zones)",
            self.AVAILABILITY_ZONE_COUNT,
            self.TIER_LAYOUT.names,
            self.TIER_LAYOUT.max_zones(),
        )

    # ================================================================================
    # Inputs
    # ================================================================================
    def _registry(self) -> Registry:
        return load_registry(self.REGISTRY_PATH)

    def _clients_path(self) -> pathlib.Path:
        if self.clients_file:
            return pathlib.Path(self.clients_file)
        if self.region:
            return pathlib.Path(f"providers/aws/regions/{self.region}/clients.auto.tfvars")
        return pathlib.Path("clients.auto.tfvars")

    def _clients(self):
        path = self._clients_path()
        if not path.is_file():
            raise RegistryError(f"Clients configuration file not found: {path}")

        records = load_client_table(path, region=self.region, environment=self.environment)

        # pick up region/environment from the table when not given
        if records:
            self.region = self.region or records[0].region
            self.environment = self.environment or records[0].environment

        return records

    def _store(self) -> LayerStateStore:
        if not self.region:
            raise PlannerError("A region is required (--region or aws_region in the client table)")
        if not self.environment:
            raise PlannerError(
                "An environment is required (--environment or environment in the client table)"
            )
        return LayerStateStore(self.STATE_ROOT, self.region)

    # ================================================================================
    # Commands
    # ================================================================================
    def validate(self):
        """Validate the CIDR registry. Exits non-zero on any violation."""
        registry = self._registry()
        logger.info("[{}] Validating CIDR registry", registry.path)
        report = registry.validate()

        print(report.render())

        if not report.ok:
            logger.error("CIDR registry validation FAILED")
            raise SystemExit(1)

        logger.info("CIDR registry validation PASSED, safe to apply")

    def allocate(
        self,
        client_id: str,
        region: str = None,
        environment: str = None,
        address_block: str = None,
        notes: str = "",
    ):
        """Append one allocation to the registry (next free block unless one is given)."""
        registry = self._registry()
        if address_block is None:
            address_block = str(
                registry.next_free_block(
                    prefix=self.ALLOCATION_PREFIX,
                    pool=self.ALLOCATION_POOL,
                    start_offset=self.START_OFFSET,
                )
            )
            logger.info("[{}] Next free block is {}", client_id, address_block)

        entry = registry.allocate(
            RegistryEntry(
                client_id=naming.validate_client_id(client_id),
                address_block=address_block,
                region=region or self.region or "",
                environment=environment or self.environment or "",
                notes=notes,
            )
        )
        print(f"{entry.client_id}: {entry.address_block}")

    def build_plan(self, zones=None) -> dict:
        """Derive subnets, names and tags for every enabled client."""
        registry = self._registry()
        report = registry.validate()
        if not report.ok:
            print(report.render())
            raise RegistryError(
                f"Refusing to plan: registry has {report.violation_count} violation(s)"
            )

        clients = enabled_clients(self._clients())
        explicit_zones = _as_list(zones)
        catalog = ZoneCatalog(cache=self.ZONES_CACHE)

        # every client must agree with the registry before ANY client is planned
        problems = []
        blocks = {}
        for c in clients:
            entry = registry.get(c.client_id)
            if entry is None:
                problems.append(f"{c.client_id}: not allocated in {registry.path}")
                continue
            if c.address_block and c.address_block != entry.address_block:
                problems.append(
                    f"{c.client_id}: client table says {c.address_block} "
                    f"but registry says {entry.address_block}"
                )
                continue
            blocks[c.client_id] = entry.address_block

        if problems:
            for p in problems:
                logger.error(p)
            raise RegistryError(
                f"Refusing to plan, {len(problems)} client(s) don't match the registry:\n  "
                + "\n  ".join(problems)
            )

        plan = {}
        for c in clients:
            region = c.region or self.region
            az = explicit_zones or catalog.zones(region, self.AVAILABILITY_ZONE_COUNT)
            subnets = derive(
                blocks[c.client_id],
                az,
                layout=self.TIER_LAYOUT,
                min_subnet_prefix=self.MIN_SUBNET_PREFIX,
            )

            def name(kind, qualifier=None):
                return naming.name(
                    c.client_id,
                    c.environment,
                    region,
                    kind,
                    qualifier,
                    separator=self.NAME_SEPARATOR,
                )

            plan[c.client_id] = {
                "address_block": subnets.address_block,
                "region": region,
                "environment": c.environment,
                "tier": c.tier,
                "availability_zones": list(subnets.availability_zones),
                "subnets": subnets.by_tier(),
                "names": {
                    "vpc": name("vpc"),
                    "cluster": name("eks"),
                    "database": name("rds"),
                    "compute": name("ec2"),
                    "subnets": {
                        s.cidr: name("subnet", f"{s.tier}-{s.availability_zone}")
                        for s in subnets
                    },
                },
                "tags": naming.tags(c, common=self.COMMON_TAGS, managed_by=self.MANAGED_BY),
                "allowed_ports": c.allowed_ports,
            }
            logger.info("[{}] Planned {} subnets in {}", c.client_id, len(subnets), region)

        return plan

    def plan(self, zones=None):
        """Plan every enabled client and save the result for generate_tfvars."""
        plan = self.build_plan(zones=zones)

        self.PLAN_RESULT.write_text(json.dumps(plan, indent=4, sort_keys=True))
        logger.info("[{}] Saved client network plan", self.PLAN_RESULT)

        rows = [
            dict(client=cid, tier=tier, zone=zone, cidr=cidr)
            for cid, p in plan.items()
            for tier, cidrs in p["subnets"].items()
            for zone, cidr in zip(p["availability_zones"], cidrs)
        ]
        if rows:
            print(pd.DataFrame(rows).to_string(index=False))
        else:
            logger.warning("No enabled clients, nothing planned")

    def generate_tfvars(self, output: str = "suggested.clients.auto.tfvars.json", zones=None):
        """Write a foundation-layer tfvars file from the saved plan."""
        if not self.PLAN_RESULT.is_file():
            self.plan(zones=zones)

        src = self.PLAN_RESULT.read_bytes()
        plan = json.loads(src)

        client_networks = {}
        for cid, p in plan.items():
            network = {
                "vpc_name": p["names"]["vpc"],
                "vpc_cidr": p["address_block"],
                "azs": p["availability_zones"],
                "tags": p["tags"],
            }
            for tier, cidrs in p["subnets"].items():
                network[f"{tier}_subnets"] = cidrs
            client_networks[cid] = network

        pathlib.Path(output).write_text(
            json.dumps({"client_networks": client_networks}, indent=2, sort_keys=True) + "\n"
        )
        logger.info(
            "[{}] Wrote tfvars from {} (sha256: {})",
            output,
            self.PLAN_RESULT,
            hashlib.sha256(src).hexdigest(),
        )

    def check_layer(self, layer: str):
        """Fail unless every enabled client has every upstream output the layer reads."""
        clients = enabled_clients(self._clients())
        layer = Layer.parse(layer)
        self._store().check(layer, self.environment, clients)
        print(f"{layer.directory}: ready for {len(clients)} client(s)")

    def publish(self, layer: str, outputs: str, allow_removal: bool = False):
        """Publish a layer's per-client outputs (JSON map, or `terraform output -json`)."""
        layer = Layer.parse(layer)
        try:
            data = json.loads(pathlib.Path(outputs).read_text())
        except ValueError as e:
            raise LayerContractError(f"[{outputs}] Outputs are not valid JSON: {e}") from None

        # terraform output -json wraps every output as {"value": ...}
        if (
            isinstance(data, dict)
            and isinstance(data.get("clients"), dict)
            and "value" in data["clients"]
        ):
            data = data["clients"]["value"]

        if not self.environment:
            self._clients()

        path = self._store().publish(
            LayerOutput(layer=layer, environment=self.environment, clients=data),
            allow_removal=allow_removal,
        )
        print(path)

    def bootstrap_backend(
        self,
        project: str,
        dry_run: bool = True,
        client: str = None,
        backend_only: bool = False,
        observability_only: bool = False,
    ):
        """Create the shared state bucket, lock table and observability buckets."""
        clients = self._clients()
        BackendBootstrap(project, self.region, self.environment).bootstrap(
            clients,
            dry_run=dry_run,
            client=client,
            backend_only=backend_only,
            observability_only=observability_only,
        )


def validate_registry(registry: str = None, config: str = "myclients.py"):
    """Validate the CIDR registry (defaults to ./cidr-registry.yaml)."""
    ClientPlanner(registry=registry, config=config).validate()


def cmd():
    import fire

    try:
        fire.Fire(ClientPlanner)
    except PlannerError as e:
        logger.error("{}", e)
        sys.exit(1)


def validate_cmd():
    import fire

    try:
        fire.Fire(validate_registry)
    except PlannerError as e:
        logger.error("{}", e)
        sys.exit(1)


if __name__ == "__main__":
    cmd()
