import json

import pytest

from planclients.clients import enabled_clients, load_client_table, parse_client_table
from planclients.errors import FormatViolation


def test_load_tfvars(clients_file):
    records = load_client_table(clients_file)
    assert [r.client_id for r in records] == ["client-a", "client-b"]

    a = records[0]
    assert a.enabled is True
    assert a.tier == "premium"
    assert a.client_code == "CA"
    assert a.address_block == "10.0.0.0/16"
    assert a.allowed_ports == [443, 8443]
    assert a.metadata == {"cost_center": "CC-1", "business_unit": "payments"}
    assert a.region == "us-east-2"
    assert a.environment == "production"

    b = records[1]
    assert b.enabled is False
    assert b.address_block is None
    assert [r.client_id for r in enabled_clients(records)] == ["client-a"]


def test_explicit_region_wins(clients_file):
    records = load_client_table(clients_file, region="us-west-2", environment="staging")
    assert {(r.region, r.environment) for r in records} == {("us-west-2", "staging")}


def test_load_tfvars_json(tmp_path):
    path = tmp_path / "clients.auto.tfvars.json"
    path.write_text(json.dumps({"clients": {"zeta": {"tier": "standard"}, "alpha": {"enabled": False}}}))
    records = load_client_table(path, region="us-east-2", environment="production")
    assert [r.client_id for r in records] == ["alpha", "zeta"]
    assert records[1].enabled is True


@pytest.mark.parametrize(
    "client,field",
    [
        ({"tier": "gold"}, "tier"),
        ({"enabled": "yes"}, "enabled"),
        ({"allowed_ports": ["https"]}, "allowed_ports"),
        ({"allowed_ports": [70000]}, "allowed_ports"),
        ({"allowed_ports": 443}, "allowed_ports"),
        ({"metadata": "retail"}, "metadata"),
    ],
)
def test_bad_fields(client, field):
    with pytest.raises(FormatViolation) as e:
        parse_client_table({"clients": {"acme": client}})
    assert e.value.field == field
    assert "acme" in str(e.value)


@pytest.mark.parametrize("client_id", ["Acme_Corp", "Acme"])
def test_bad_client_id(client_id):
    with pytest.raises(FormatViolation):
        parse_client_table({"clients": {client_id: {}}})


def test_missing_clients_map():
    with pytest.raises(FormatViolation):
        parse_client_table({"client": {}})


def test_hcl2_block_and_quote_quirks():
    # older python-hcl2 wraps blocks in lists, newer ones keep string quotes
    data = {"clients": [{"acme": [{"tier": '"premium"', "enabled": True, "client_code": '"ACM"'}]}]}
    (record,) = parse_client_table(data, region="us-east-2", environment="production")
    assert record.tier == "premium"
    assert record.client_code == "ACM"
