"""
boto3 client factories.

Every client uses the region from ``AWS_REGION``. ``AWS_ENDPOINT_URL`` points
all of them at LocalStack; ``DYNAMODB_ENDPOINT_URL`` overrides it for the
table alone (DynamoDB Local).
"""

import os
from typing import Any, Dict, Optional

import boto3

REGION = os.getenv("AWS_REGION", os.getenv("AWS_DEFAULT_REGION", "us-east-1"))
ENDPOINT = os.getenv("AWS_ENDPOINT_URL")  # e.g., http://localhost:4566 for LocalStack
DYNAMODB_ENDPOINT = os.getenv("DYNAMODB_ENDPOINT_URL")  # e.g., http://localhost:8001


def _kw(endpoint: Optional[str] = None) -> Dict[str, Any]:
    k: Dict[str, Any] = {"region_name": REGION}
    endpoint = endpoint or ENDPOINT
    if endpoint:
        k["endpoint_url"] = endpoint
    return k


def dynamodb_resource():
    return boto3.resource("dynamodb", **_kw(DYNAMODB_ENDPOINT))


def s3_client():
    return boto3.client("s3", **_kw())


def logs_client():
    return boto3.client("logs", **_kw())


def secrets_client():
    return boto3.client("secretsmanager", **_kw())
