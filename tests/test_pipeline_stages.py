"""Tests for the small pipeline building blocks: dependency cache, bootstrap detection, outputs, runtime config."""
import json

import boto3
import pytest
from botocore.stub import Stubber

from launchpad.modules.deployments import dependency_cache
from launchpad.modules.deployments.bootstrap import BootstrapProbe, is_already_bootstrapped, toolkit_ready
from launchpad.modules.deployments.outputs import read_stack_outputs
from launchpad.modules.deployments.runtime_config import CONFIG_KEY, NO_CACHE, RuntimeConfigPublisher


# ---------------------------------------------------------------------------
# Dependency cache
# ---------------------------------------------------------------------------
def test_hash_changes_with_manifest_and_lockfile(tmp_path):
    (tmp_path / "package.json").write_text('{"name": "a"}')
    first = dependency_cache.dependency_hash(tmp_path)
    (tmp_path / "package-lock.json").write_text('{"lockfileVersion": 3}')
    second = dependency_cache.dependency_hash(tmp_path)
    (tmp_path / "package.json").write_text('{"name": "b"}')
    third = dependency_cache.dependency_hash(tmp_path)
    assert len({first, second, third}) == 3


def test_up_to_date_requires_install_and_matching_hash(tmp_path):
    (tmp_path / "package.json").write_text('{"name": "a"}')
    assert not dependency_cache.is_up_to_date(tmp_path)

    dependency_cache.record_install(tmp_path, dependency_cache.dependency_hash(tmp_path))
    # Marker alone is not enough without node_modules
    assert not dependency_cache.is_up_to_date(tmp_path)

    (tmp_path / "node_modules").mkdir()
    assert dependency_cache.is_up_to_date(tmp_path)

    (tmp_path / "package.json").write_text('{"name": "a", "dependencies": {"x": "1"}}')
    assert not dependency_cache.is_up_to_date(tmp_path)


# ---------------------------------------------------------------------------
# Bootstrap detection
# ---------------------------------------------------------------------------
@pytest.mark.parametrize("output, expected", [
    ("Environment aws://123456789012/us-east-1 already bootstrapped", True),
    (" ✅  Environment aws://123456789012/us-east-1 bootstrapped (no changes).", True),
    ("AccessDenied: not authorized to perform cloudformation:CreateStack", False),
    ("", False),
])
def test_already_bootstrapped_pattern(output, expected):
    assert is_already_bootstrapped(output) is expected


def test_toolkit_ready_statuses():
    assert toolkit_ready("CREATE_COMPLETE")
    assert toolkit_ready("UPDATE_COMPLETE")
    assert not toolkit_ready("ROLLBACK_COMPLETE")
    assert not toolkit_ready("DELETE_COMPLETE")
    assert not toolkit_ready("CREATE_IN_PROGRESS")


@pytest.mark.asyncio
async def test_probe_reads_toolkit_stack(credentials):
    from datetime import datetime, timezone

    cfn = boto3.client("cloudformation", region_name="us-east-1")
    with Stubber(cfn) as stubber:
        stubber.add_response(
            "describe_stacks",
            {"Stacks": [{
                "StackName": "CDKToolkit",
                "CreationTime": datetime(2024, 1, 1, tzinfo=timezone.utc),
                "StackStatus": "UPDATE_COMPLETE",
            }]},
            {"StackName": "CDKToolkit"},
        )
        stubber.add_client_error(
            "describe_stacks",
            service_error_code="ValidationError",
            service_message="Stack with id CDKToolkit does not exist",
            http_status_code=400,
        )
        probe = BootstrapProbe(client_factory=lambda creds, service, region: cfn)
        assert await probe.is_bootstrapped(credentials, "us-east-1") is True
        assert await probe.is_bootstrapped(credentials, "us-east-1") is False


# ---------------------------------------------------------------------------
# Stack outputs
# ---------------------------------------------------------------------------
def test_read_stack_outputs(tmp_path):
    outputs_file = tmp_path / "cdk-outputs-dev.json"
    outputs_file.write_text(json.dumps({
        "todo-app-Dev": {
            "WebBucketName": "bucket",
            "ApiUrl": "https://api.example.com",
            "PreviewUrl": "https://preview.example.com",
        },
        "other-Dev": {"PreviewUrl": "https://other.example.com"},
    }))
    outputs = read_stack_outputs(outputs_file, "todo-app-Dev")
    assert outputs.web_bucket == "bucket"
    assert outputs.preview_url == "https://preview.example.com"
    assert outputs.prod_url is None


def test_read_stack_outputs_tolerates_missing_or_bad_file(tmp_path):
    assert read_stack_outputs(tmp_path / "absent.json", "todo-app-Dev").values == {}
    bad = tmp_path / "bad.json"
    bad.write_text("not json")
    assert read_stack_outputs(bad, "todo-app-Dev").values == {}
    assert read_stack_outputs(bad, "todo-app-Dev").preview_url is None


# ---------------------------------------------------------------------------
# Runtime config
# ---------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_runtime_config_is_written_uncached(credentials):
    s3 = boto3.client("s3", region_name="us-east-1")
    with Stubber(s3) as stubber:
        stubber.add_response(
            "put_object",
            {},
            {
                "Bucket": "todo-web-bucket",
                "Key": CONFIG_KEY,
                "Body": json.dumps({"apiUrl": "https://api.example.com", "environment": "dev"}).encode(),
                "ContentType": "application/json",
                "CacheControl": NO_CACHE,
            },
        )
        publisher = RuntimeConfigPublisher(client_factory=lambda creds, service, region: s3)
        config = await publisher.publish(credentials, "us-east-1", "todo-web-bucket", "https://api.example.com", "dev")
        stubber.assert_no_pending_responses()

    assert config == {"apiUrl": "https://api.example.com", "environment": "dev"}
