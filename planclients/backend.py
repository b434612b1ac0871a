"""Shared terraform backend and observability buckets.

One state bucket and one lock table hold state for every client. Observability
buckets are shared too, with each client's data isolated under its own
"<kind>/client=<id>/" prefix, so onboarding a client never creates a bucket.
"""

import json
from typing import Iterable, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger

from . import naming
from .errors import PlannerError
from .models import ClientRecord

ENCRYPTION = {
    "Rules": [
        {
            "ApplyServerSideEncryptionByDefault": {"SSEAlgorithm": "AES256"},
            "BucketKeyEnabled": True,
        }
    ]
}

PUBLIC_ACCESS_BLOCK = {
    "BlockPublicAcls": True,
    "IgnorePublicAcls": True,
    "BlockPublicPolicy": True,
    "RestrictPublicBuckets": True,
}


class BackendBootstrap:
    def __init__(self, project: str, region: str, environment: str, session=None):
        self.project = project
        self.region = region
        self.environment = environment
        self.session = session or boto3.session.Session(region_name=region)

    def plan(
        self,
        clients: Iterable[ClientRecord],
        client: Optional[str] = None,
        backend_only: bool = False,
        observability_only: bool = False,
    ) -> dict:
        """Everything bootstrap() would create, with per-client prefixes.

        `client` narrows the plan to one enabled client. `backend_only` and
        `observability_only` pick one half of the infrastructure.
        """
        if backend_only and observability_only:
            raise PlannerError("Pick at most one of backend_only and observability_only")

        clients = [c for c in clients if c.enabled and (client is None or c.client_id == client)]
        if not clients:
            if client is not None:
                raise PlannerError(f"No enabled client named {client!r}")
            raise PlannerError("No enabled clients, nothing to bootstrap")

        plan = {"clients": [c.client_id for c in clients]}

        if not observability_only:
            plan["state_bucket"] = naming.state_bucket_name(self.project, self.environment)
            plan["lock_table"] = naming.lock_table_name(self.region)
            plan["state_keys"] = {
                c.client_id: naming.state_key(self.region, "*", self.environment) for c in clients
            }

        if not backend_only:
            plan["observability"] = {
                kind: {
                    "bucket": naming.observability_bucket_name(
                        self.project, self.region, kind, self.environment
                    ),
                    "prefixes": {
                        c.client_id: naming.client_prefix(kind, c.client_id) for c in clients
                    },
                }
                for kind in naming.OBSERVABILITY_KINDS
            }

        return plan

    def check_credentials(self) -> dict:
        """Fail before creating anything if the AWS credentials don't work."""
        logger.info("Validating AWS credentials...")
        try:
            identity = self.session.client("sts", region_name=self.region).get_caller_identity()
        except (BotoCoreError, ClientError) as e:
            raise PlannerError(f"AWS credentials not configured or invalid: {e}") from e

        logger.info("Account ID: {}", identity.get("Account"))
        logger.info("User/Role: {}", identity.get("Arn"))
        return identity

    def bootstrap(
        self,
        clients: Iterable[ClientRecord],
        dry_run: bool = True,
        client: Optional[str] = None,
        backend_only: bool = False,
        observability_only: bool = False,
    ) -> dict:
        plan = self.plan(
            clients, client=client, backend_only=backend_only, observability_only=observability_only
        )
        logger.info("Backend plan:\n{}", json.dumps(plan, indent=4))

        if dry_run:
            logger.info("[DRY RUN] Nothing created")
            return plan

        self.check_credentials()

        s3 = self.session.client("s3", region_name=self.region)
        buckets = [plan["state_bucket"]] if "state_bucket" in plan else []
        buckets += [o["bucket"] for o in plan.get("observability", {}).values()]
        for bucket in buckets:
            self._create_bucket(s3, bucket)

        if "lock_table" in plan:
            self._create_lock_table(
                self.session.client("dynamodb", region_name=self.region), plan["lock_table"]
            )

        logger.info("Backend ready for {}: {} bucket(s)", plan["clients"], len(buckets))
        return plan

    def _create_bucket(self, s3, bucket: str):
        logger.info("[{}] Creating bucket", bucket)
        kwargs = dict(Bucket=bucket)

        # us-east-1 rejects an explicit LocationConstraint
        if self.region != "us-east-1":
            kwargs["CreateBucketConfiguration"] = {"LocationConstraint": self.region}

        try:
            s3.create_bucket(**kwargs)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") != "BucketAlreadyOwnedByYou":
                raise
            logger.warning("[{}] Bucket already exists, securing anyway", bucket)

        s3.put_bucket_versioning(Bucket=bucket, VersioningConfiguration={"Status": "Enabled"})
        s3.put_bucket_encryption(Bucket=bucket, ServerSideEncryptionConfiguration=ENCRYPTION)
        s3.put_public_access_block(
            Bucket=bucket, PublicAccessBlockConfiguration=PUBLIC_ACCESS_BLOCK
        )

    def _create_lock_table(self, dynamodb, table: str):
        logger.info("[{}] Creating lock table", table)
        try:
            dynamodb.create_table(
                TableName=table,
                AttributeDefinitions=[{"AttributeName": "LockID", "AttributeType": "S"}],
                KeySchema=[{"AttributeName": "LockID", "KeyType": "HASH"}],
                BillingMode="PAY_PER_REQUEST",
            )
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") != "ResourceInUseException":
                raise
            logger.warning("[{}] Lock table already exists", table)
