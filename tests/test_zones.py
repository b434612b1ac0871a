import json

import pytest
from botocore.exceptions import ClientError

from planclients.errors import InvalidZoneCount
from planclients.zones import ZoneCatalog


class FakeEC2:
    def __init__(self, zones, error=None):
        self.zones = zones
        self.error = error
        self.calls = 0

    def describe_availability_zones(self, **kwargs):
        self.calls += 1
        if self.error:
            raise self.error
        return {"AvailabilityZones": self.zones}


class FakeSession:
    def __init__(self, ec2):
        self.ec2 = ec2
        self.regions = []

    def client(self, service, region_name=None):
        assert service == "ec2"
        self.regions.append(region_name)
        return self.ec2


OHIO = [
    {"ZoneName": "us-east-2c", "ZoneId": "use2-az3", "State": "available"},
    {"ZoneName": "us-east-2a", "ZoneId": "use2-az1", "State": "available"},
    {"ZoneName": "us-east-2b", "ZoneId": "use2-az2", "State": "available"},
]


def test_discovers_and_orders_by_zone_id(tmp_path):
    ec2 = FakeEC2(OHIO)
    session = FakeSession(ec2)
    catalog = ZoneCatalog(cache=str(tmp_path / "zones.json"), session=session)

    assert catalog.zones("us-east-2") == ["us-east-2a", "us-east-2b"]
    assert catalog.zones("us-east-2", count=None) == ["us-east-2a", "us-east-2b", "us-east-2c"]
    assert session.regions == ["us-east-2"]
    assert ec2.calls == 1


def test_uses_cache(tmp_path):
    cache = tmp_path / "zones.json"
    cache.write_text(json.dumps({"eu-west-1": {"ZoneName": ["eu-west-1b", "eu-west-1a"], "ZoneId": ["euw1-az2", "euw1-az1"]}}))
    ec2 = FakeEC2([])
    catalog = ZoneCatalog(cache=str(cache), session=FakeSession(ec2))

    assert catalog.zones("eu-west-1") == ["eu-west-1a", "eu-west-1b"]
    assert ec2.calls == 0


def test_writes_cache(tmp_path):
    cache = tmp_path / "zones.json"
    ZoneCatalog(cache=str(cache), session=FakeSession(FakeEC2(OHIO))).zones("us-east-2")
    saved = json.loads(cache.read_text())
    assert sorted(saved["us-east-2"]["ZoneId"]) == ["use2-az1", "use2-az2", "use2-az3"]


def test_broken_cache_refetches(tmp_path):
    cache = tmp_path / "zones.json"
    cache.write_text("{not json")
    ec2 = FakeEC2(OHIO)
    assert ZoneCatalog(cache=str(cache), session=FakeSession(ec2)).zones("us-east-2")
    assert ec2.calls == 1


def test_not_enough_zones(tmp_path):
    catalog = ZoneCatalog(cache=str(tmp_path / "zones.json"), session=FakeSession(FakeEC2(OHIO[:1])))
    with pytest.raises(InvalidZoneCount):
        catalog.zones("us-east-2")


def test_access_errors_propagate(tmp_path):
    error = ClientError({"Error": {"Code": "AuthFailure", "Message": "no"}}, "DescribeAvailabilityZones")
    catalog = ZoneCatalog(cache=str(tmp_path / "zones.json"), session=FakeSession(FakeEC2([], error)))
    with pytest.raises(ClientError):
        catalog.zones("us-east-2")
