import json

import pytest

from planclients.errors import LayerContractError, LockContention, MissingUpstreamReference
from planclients.layers import (
    CONTRACTS,
    Layer,
    LayerContract,
    LayerOutput,
    LayerStateStore,
    check_preconditions,
    missing_references,
)
from planclients.locking import StateLock
from planclients.models import ClientRecord

FOUNDATION = {
    "vpc_id": "vpc-1",
    "vpc_cidr": "10.0.0.0/16",
    "public_subnet_ids": ["subnet-1"],
    "platform_subnet_ids": ["subnet-2"],
    "database_subnet_ids": ["subnet-3"],
    "compute_subnet_ids": ["subnet-4"],
}


def foundation(*client_ids, **overrides):
    return LayerOutput(
        Layer.FOUNDATION,
        "production",
        {cid: {**FOUNDATION, **overrides} for cid in client_ids},
    )


def test_layer_order_and_directories():
    assert sorted(Layer) == [
        Layer.FOUNDATION,
        Layer.PLATFORM,
        Layer.DATABASE,
        Layer.COMPUTE,
        Layer.CLUSTER_SERVICES,
        Layer.OBSERVABILITY,
    ]
    assert Layer.CLUSTER_SERVICES.directory == "05-cluster-services"
    for text in ("cluster-services", "05-cluster-services", "CLUSTER_SERVICES", "5", 5):
        assert Layer.parse(text) is Layer.CLUSTER_SERVICES
    with pytest.raises(ValueError):
        Layer.parse("networking")


def test_contracts_only_read_earlier_layers():
    for layer, contract in CONTRACTS.items():
        assert all(up < layer for up in contract.requires)
    assert CONTRACTS[Layer.FOUNDATION].requires == {}
    # nothing downstream reads observability
    assert not any(Layer.OBSERVABILITY in c.requires for c in CONTRACTS.values())


def test_contract_cannot_read_later_layer():
    with pytest.raises(LayerContractError):
        LayerContract(Layer.PLATFORM, publishes=(), requires={Layer.DATABASE: ("x",)})


def test_preconditions_pass():
    check_preconditions(Layer.PLATFORM, ["client-a", "client-b"], {Layer.FOUNDATION: foundation("client-a", "client-b")})


def test_foundation_has_no_preconditions():
    check_preconditions(Layer.FOUNDATION, ["client-a"], {})


def test_one_missing_client_fails_whole_layer():
    with pytest.raises(MissingUpstreamReference) as e:
        check_preconditions(
            Layer.PLATFORM, ["client-a", "client-b"], {Layer.FOUNDATION: foundation("client-a")}
        )
    assert e.value.missing == ["foundation: client client-b not published"]
    assert "client-b" in str(e.value)


def test_every_gap_reported():
    missing = missing_references(
        Layer.DATABASE,
        ["client-a"],
        {Layer.FOUNDATION: foundation("client-a", database_subnet_ids=[], vpc_id=None), Layer.PLATFORM: None},
    )
    assert missing == [
        "foundation: client client-a is missing vpc_id",
        "foundation: client client-a is missing database_subnet_ids",
        "platform: no published output",
    ]


def test_disabled_clients_ignored():
    records = [
        ClientRecord("client-a", enabled=True),
        ClientRecord("client-b", enabled=False),
    ]
    check_preconditions(Layer.PLATFORM, records, {Layer.FOUNDATION: foundation("client-a")})


def test_old_upstream_version_rejected():
    output = foundation("client-a")
    output.version = 0
    with pytest.raises(MissingUpstreamReference) as e:
        check_preconditions(Layer.PLATFORM, ["client-a"], {Layer.FOUNDATION: output})
    assert "version 0" in e.value.missing[0]


def test_store_publish_and_check(tmp_path):
    store = LayerStateStore(tmp_path, "us-east-2")
    path = store.publish(foundation("client-a"))

    assert path == tmp_path / "us-east-2" / "layers" / "01-foundation" / "production" / "outputs.json"
    saved = json.loads(path.read_text())
    assert saved["layer"] == "foundation"
    assert saved["published_at"]

    loaded = store.load(Layer.FOUNDATION, "production")
    assert loaded.clients["client-a"]["vpc_id"] == "vpc-1"

    store.check(Layer.PLATFORM, "production", ["client-a"])
    with pytest.raises(MissingUpstreamReference):
        store.check(Layer.DATABASE, "production", ["client-a"])


def test_publish_requires_contract_fields(tmp_path):
    store = LayerStateStore(tmp_path, "us-east-2")
    with pytest.raises(LayerContractError):
        store.publish(LayerOutput(Layer.FOUNDATION, "production", {"client-a": {"vpc_id": "vpc-1"}}))


def test_publish_is_append_stable(tmp_path):
    store = LayerStateStore(tmp_path, "us-east-2")
    store.publish(foundation("client-a", "client-b"))

    with pytest.raises(LayerContractError) as e:
        store.publish(foundation("client-a"))
    assert "client client-b" in str(e.value)

    extra = foundation("client-a", "client-b")
    extra.clients["client-a"]["nat_gateway_ids"] = ["nat-1"]
    store.publish(extra)

    with pytest.raises(LayerContractError):
        store.publish(foundation("client-a", "client-b"))

    store.publish(foundation("client-a"), allow_removal=True)
    assert list(store.load(Layer.FOUNDATION, "production").clients) == ["client-a"]


def test_publish_fails_fast_when_locked(tmp_path):
    store = LayerStateStore(tmp_path, "us-east-2")
    with StateLock(store.path(Layer.FOUNDATION, "production")):
        with pytest.raises(LockContention) as e:
            store.publish(foundation("client-a"))
    assert "pid" in e.value.holder

    # lock released, retry succeeds
    store.publish(foundation("client-a"))


def published(layer, *client_ids):
    fields = CONTRACTS[layer].publishes
    return LayerOutput(layer, "production", {cid: {f: f"{f}-1" for f in fields} for cid in client_ids})


def test_compute_waits_for_database():
    upstream = {
        Layer.FOUNDATION: foundation("client-a"),
        Layer.PLATFORM: published(Layer.PLATFORM, "client-a"),
    }
    with pytest.raises(MissingUpstreamReference) as e:
        check_preconditions(Layer.COMPUTE, ["client-a"], upstream)
    assert e.value.missing == ["database: no published output"]

    upstream[Layer.DATABASE] = published(Layer.DATABASE, "client-a")
    check_preconditions(Layer.COMPUTE, ["client-a"], upstream)


def test_prior_layer_must_cover_every_client():
    upstream = {
        Layer.PLATFORM: published(Layer.PLATFORM, "client-a", "client-b"),
        Layer.COMPUTE: published(Layer.COMPUTE, "client-a"),
    }
    assert missing_references(Layer.CLUSTER_SERVICES, ["client-a", "client-b"], upstream) == [
        "compute: client client-b not published"
    ]


def test_every_layer_after_foundation_needs_the_one_before():
    for layer, contract in CONTRACTS.items():
        if layer is Layer.FOUNDATION:
            assert contract.upstream_layers == []
        else:
            assert Layer(layer - 1) in contract.upstream_layers


def test_store_checks_prior_layer(tmp_path):
    store = LayerStateStore(tmp_path, "us-east-2")
    store.publish(foundation("client-a"))
    store.publish(published(Layer.PLATFORM, "client-a"))

    with pytest.raises(MissingUpstreamReference) as e:
        store.check(Layer.COMPUTE, "production", ["client-a"])
    assert "database: no published output" in e.value.missing


@pytest.mark.parametrize("clients", [["client-a"], "client-a", {"client-a": ["vpc-1"]}])
def test_publish_rejects_malformed_outputs(tmp_path, clients):
    store = LayerStateStore(tmp_path, "us-east-2")
    with pytest.raises(LayerContractError):
        store.publish(LayerOutput(Layer.FOUNDATION, "production", clients))


def test_malformed_upstream_reported_not_crashed():
    upstream = {Layer.FOUNDATION: LayerOutput(Layer.FOUNDATION, "production", {"client-a": "vpc-1"})}
    assert missing_references(Layer.PLATFORM, ["client-a"], upstream) == [
        "foundation: client client-a output is not a map of fields"
    ]


def test_load_rejects_malformed_state(tmp_path):
    store = LayerStateStore(tmp_path, "us-east-2")
    path = store.path(Layer.FOUNDATION, "production")
    path.parent.mkdir(parents=True)
    path.write_text(json.dumps(["not", "a", "map"]))
    with pytest.raises(LayerContractError):
        store.load(Layer.FOUNDATION, "production")
