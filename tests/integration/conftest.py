"""Pytest configuration and fixtures for integration tests."""

import json
import os
import shutil
import subprocess
import sys
import time
import uuid
from typing import Any, Dict, Generator

import boto3
import pytest


PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))


def check_aws_credentials():
    """Check if AWS credentials are configured and provide guidance if not."""
    try:
        sts = boto3.client("sts")
        identity = sts.get_caller_identity()
        return True, identity
    except Exception:
        print("\n" + "=" * 80)
        print("AWS CREDENTIALS NOT CONFIGURED")
        print("=" * 80)
        print("\nIntegration tests require AWS credentials to deploy resources.")
        print("\n1. Run aws configure and enter your credentials:")
        print("   aws configure")
        print("\n2. Verify:")
        print("   aws sts get-caller-identity")
        print("\n3. Run tests:")
        print("   RUN_INTEGRATION_TESTS=1 pytest tests/integration\n")
        print("SKIP INTEGRATION TESTS:")
        print("  pytest    # unit and infrastructure tests only (no AWS)\n")
        print("=" * 80)
        return False, None


def _cdk(args, aws_region: str) -> subprocess.CompletedProcess:
    """Run a CDK CLI command from the project root."""
    # Prefer installed cdk, fallback to npx
    command = ["cdk"] if shutil.which("cdk") else ["npx", "cdk"]
    venv_python = sys.executable

    return subprocess.run(
        [*command, *args],
        cwd=PROJECT_ROOT,
        capture_output=True,
        text=True,
        env={
            **os.environ,
            "CDK_DEFAULT_REGION": aws_region,
            "PATH": f"{os.path.dirname(venv_python)}:{os.environ.get('PATH', '')}",
        },
    )


@pytest.fixture(scope="session")
def aws_region() -> str:
    """Get AWS region from environment or AWS config."""
    region = os.environ.get("AWS_REGION")
    if region:
        return region

    try:
        result = subprocess.run(
            ["aws", "configure", "get", "region"],
            capture_output=True,
            text=True,
            timeout=5,
        )
        if result.returncode == 0 and result.stdout.strip():
            return result.stdout.strip()
    except (OSError, subprocess.SubprocessError):
        pass

    return "us-east-1"


@pytest.fixture(scope="session")
def resource_suffix() -> str:
    """Generate a unique suffix so parallel deployments do not collide."""
    return str(uuid.uuid4())[:8]


@pytest.fixture(scope="session")
def test_stack_name(resource_suffix: str) -> str:
    """Generate unique test stack name to avoid conflicts."""
    return f"IntegrationTest-OrderStack-{int(time.time())}-{resource_suffix}"


@pytest.fixture(scope="session", autouse=True)
def verify_aws_credentials():
    """Verify AWS credentials before running any integration tests."""
    has_creds, identity = check_aws_credentials()
    if not has_creds:
        pytest.exit("AWS credentials not configured. See guidance above.", returncode=2)
    print(f"\nAWS Account: {identity['Account']}")
    print(f"AWS User/Role: {identity['Arn']}\n")


@pytest.fixture(scope="session")
def deployed_stack(
    test_stack_name: str, resource_suffix: str, aws_region: str
) -> Generator[Dict[str, Any], None, None]:
    """
    Deploy the CDK stack for integration testing and clean up after.

    Yields:
        Dictionary with the CloudFormation outputs plus the physical names
        derived from the resource suffix.
    """
    outputs_file = f"/tmp/{test_stack_name}-outputs.json"
    context = [
        "--context",
        f"stack_name={test_stack_name}",
        "--context",
        f"resource_suffix={resource_suffix}",
    ]

    print(f"\nDeploying integration test stack: {test_stack_name}")
    deploy_result = _cdk(
        ["deploy", "--require-approval", "never", "--outputs-file", outputs_file, *context],
        aws_region,
    )

    if deploy_result.returncode != 0:
        pytest.fail(
            f"CDK deployment failed:\nSTDOUT: {deploy_result.stdout}\nSTDERR: {deploy_result.stderr}"
        )

    with open(outputs_file, "r") as f:
        outputs_data = json.load(f)

    # CDK wraps outputs in the stack name
    stack_outputs = list(outputs_data.values())[0] if outputs_data else {}
    stack_outputs["TableName"] = f"order-{resource_suffix}"
    stack_outputs["TopicName"] = f"orderConfirmation-{resource_suffix}"

    print(f"Stack deployed successfully. Outputs: {stack_outputs}")

    yield stack_outputs

    print(f"\nDestroying integration test stack: {test_stack_name}")
    destroy_result = _cdk(["destroy", "--force", *context], aws_region)

    if destroy_result.returncode != 0:
        print(
            f"WARNING: Stack destruction failed:\nSTDOUT: {destroy_result.stdout}\nSTDERR: {destroy_result.stderr}"
        )


@pytest.fixture(scope="session")
def api_url(deployed_stack: Dict[str, Any]) -> str:
    """Base URL of the deployed HTTP API, without a trailing slash."""
    return deployed_stack["HttpApiUrl"].rstrip("/")


@pytest.fixture(scope="session")
def dynamodb_client(aws_region: str):
    """Create DynamoDB client."""
    return boto3.client("dynamodb", region_name=aws_region)


@pytest.fixture(scope="session")
def sns_client(aws_region: str):
    """Create SNS client."""
    return boto3.client("sns", region_name=aws_region)


@pytest.fixture(scope="session")
def sqs_client(aws_region: str):
    """Create SQS client."""
    return boto3.client("sqs", region_name=aws_region)
