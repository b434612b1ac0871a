import itertools

import pytest

from planclients import naming
from planclients.errors import FormatViolation
from planclients.naming import TagBuilder, merge_tags, name, tags


def test_name_shape():
    assert name("acme", "production", "us-east-2", "vpc") == "acme--production--us-east-2--vpc"
    assert (
        name("acme-corp", "staging", "eu-west-1", "subnet", "public-eu-west-1a")
        == "acme-corp--staging--eu-west-1--subnet--public-eu-west-1a"
    )


@pytest.mark.parametrize("client_id", ["ACME", "Acme", "acme-Corp"])
def test_uppercase_client_id_rejected_not_folded(client_id):
    with pytest.raises(FormatViolation):
        name(client_id, "production", "us-east-2", "eks")
    assert naming.validate_client_id("acme") == "acme"


def test_name_is_stable():
    args = ("client-a", "production", "us-east-2", "rds", "primary")
    assert name(*args) == name(*args)


@pytest.mark.parametrize("client_id", ["acme_corp", "acme corp", "acme.corp", "acmé", "-acme", "acme-", "ac--me", ""])
def test_bad_client_ids_rejected(client_id):
    with pytest.raises(FormatViolation):
        name(client_id, "production", "us-east-2", "vpc")


def test_bad_components_rejected():
    with pytest.raises(FormatViolation):
        name("acme", "Production", "us-east-2", "vpc")
    with pytest.raises(FormatViolation):
        name("acme", "production", "us-east-2", "vpc", "")


def test_name_injective():
    # hyphenated parts that would collide under a plain "-" join
    components = {
        "client_id": ["a", "a-b", "b"],
        "environment": ["b", "b-c", "c"],
        "region": ["us-east-2", "us-east", "east-2"],
        "kind": ["vpc", "vpc-x"],
        "qualifier": [None, "x", "1"],
    }
    seen = {}
    for combo in itertools.product(*components.values()):
        result = name(*combo)
        assert seen.setdefault(result, combo) == combo, (result, combo, seen[result])


def test_merge_tags_precedence():
    assert merge_tags({"A": 1, "B": 2}, {"B": 3, "C": 4}) == {"A": 1, "B": 3, "C": 4}


def test_merge_tags_does_not_mutate():
    base = {"A": "1"}
    merge_tags(base, {"A": "2"})
    assert base == {"A": "1"}


def test_tag_builder_layers_in_order():
    builder = TagBuilder({"Team": "infra", "Env": "dev"}).layer("env", {"Env": "prod"}).layer("none", None)
    assert builder.build() == {"Team": "infra", "Env": "prod"}
    assert builder.labels == ["base", "env", "none"]


def test_standard_tags(client_record):
    assert tags(client_record) == {
        "Client": "acme",
        "ClientTier": "premium",
        "ClientCode": "ACM",
        "CostCenter": "CC-1001",
        "BusinessUnit": "commerce",
        "Environment": "production",
        "ManagedBy": "Terraform",
    }


def test_tag_overrides_win(client_record):
    client_record.metadata["tags"] = {"Compliance": "pci", "CostCenter": "CC-9"}
    result = tags(client_record, overrides={"CostCenter": "CC-override"}, common={"Project": "x", "Client": "nope"})

    assert result["Compliance"] == "pci"
    assert result["CostCenter"] == "CC-override"
    assert result["Project"] == "x"
    # common tags sit under the standard keys
    assert result["Client"] == "acme"


def test_client_code_defaults_to_client_id(client_record):
    client_record.client_code = ""
    assert tags(client_record)["ClientCode"] == "acme"


def test_tags_reject_bad_client(client_record):
    client_record.client_id = "Bad Client"
    with pytest.raises(FormatViolation):
        tags(client_record)


def test_backend_names():
    assert naming.state_bucket_name("ohio-01-eks", "production") == "ohio-01-eks-terraform-state-production"
    assert naming.lock_table_name("us-east-2") == "terraform-locks-us-east"
    assert (
        naming.observability_bucket_name("ohio-01-eks", "us-east-2", "audit-logs", "production")
        == "ohio-01-eks-us-east-2-audit-logs-production"
    )
    assert naming.client_prefix("logs", "est-test-a") == "logs/client=est-test-a/"
    assert (
        naming.state_key("us-east-2", "01-foundation", "production")
        == "providers/aws/regions/us-east-2/layers/01-foundation/production/terraform.tfstate"
    )


def test_unknown_observability_kind():
    with pytest.raises(FormatViolation):
        naming.observability_bucket_name("p", "us-east-2", "profiles", "production")
