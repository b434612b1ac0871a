import textwrap

import pytest

from planclients.models import ClientRecord, RegistryEntry


@pytest.fixture
def entry():
    def make(client_id, block, **kw):
        return RegistryEntry(client_id=client_id, address_block=block, **kw)

    return make


@pytest.fixture
def client_record():
    return ClientRecord(
        client_id="acme",
        enabled=True,
        tier="premium",
        address_block="10.2.0.0/16",
        region="us-east-2",
        environment="production",
        client_code="ACM",
        allowed_ports=[443],
        metadata={"cost_center": "CC-1001", "business_unit": "commerce", "industry": "retail"},
    )


@pytest.fixture
def registry_file(tmp_path):
    path = tmp_path / "cidr-registry.yaml"
    path.write_text(
        textwrap.dedent(
            """\
            allocations:
              - client_id: client-a
                address_block: "10.0.0.0/16"
                region: us-east-2
                environment: production
                allocated_date: 2025-01-15
                notes: pilot
              - client_id: client-b
                vpc_cidr: "10.1.0.0/16"
                region: us-west-2
                environment: production
            reserved:
              - cidr: "10.255.0.0/16"
                purpose: shared services
            """
        )
    )
    return path


@pytest.fixture
def clients_file(tmp_path):
    path = tmp_path / "clients.auto.tfvars"
    path.write_text(
        textwrap.dedent(
            """\
            aws_region  = "us-east-2"
            environment = "production"

            clients = {
              client-a = {
                enabled       = true
                tier          = "premium"
                client_code   = "CA"
                vpc_cidr      = "10.0.0.0/16"
                allowed_ports = [443, 8443]
                metadata = {
                  cost_center   = "CC-1"
                  business_unit = "payments"
                }
              }
              client-b = {
                enabled = false
                tier    = "standard"
              }
            }
            """
        )
    )
    return path
