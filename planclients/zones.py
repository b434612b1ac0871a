import json
import pathlib
from typing import Optional

import boto3
import pandas as pd
from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger

from .errors import InvalidZoneCount


class ZoneCatalog:
    """Availability zones your AWS account/profile can see, cached on disk.

    Cache layout is region-name => {"ZoneName": [zones-by-name], "ZoneId": [zones-by-id]}
    """

    def __init__(self, cache: str = "cache.myzones.json", session=None):
        self.cache = pathlib.Path(cache)
        self.session = session
        self.myzones: dict[str, dict[str, list[str]]] = dict()
        self._loaded = False

    def _load_cache(self):
        self._loaded = True
        if not self.cache.is_file():
            return

        logger.info("[{}] Loading cached zones...", self.cache)
        try:
            self.myzones = json.loads(self.cache.read_text())
        except (OSError, ValueError):
            # error loading, fetch again
            logger.error("Loading cache failed, will fetch live zones again.")
            self.myzones = dict()

    def _discover(self, region: str):
        logger.info("[{}] Asking for zones...", region)
        session = self.session or boto3.session.Session()
        try:
            found = session.client("ec2", region_name=region).describe_availability_zones(
                Filters=[{"Name": "zone-type", "Values": ["availability-zone"]}]
            )["AvailabilityZones"]
        except (BotoCoreError, ClientError):
            logger.error("[{}] Failed to access!", region)
            raise

        # yeah, pandas just to flatten the JSON; easy enough.
        self.myzones[region] = (
            pd.json_normalize(found)[["ZoneName", "ZoneId"]].to_dict("list") if found else {}
        )

        self.cache.write_text(json.dumps(self.myzones, indent=4))
        logger.info("Cached zones at {}", self.cache)

    def zones(self, region: str, count: Optional[int] = 2) -> list[str]:
        """Zone names for region, ordered by zone id (stable across accounts)."""
        if not self._loaded:
            self._load_cache()

        if region not in self.myzones:
            self._discover(region)

        zone_map = self.myzones.get(region) or {}
        pairs = sorted(zip(zone_map.get("ZoneId", []), zone_map.get("ZoneName", [])))
        names = [name for _, name in pairs]

        if count is not None:
            if len(names) < count:
                raise InvalidZoneCount(
                    f"[{region}] Only {len(names)} availability zones visible, need {count}"
                )
            names = names[:count]

        return names
