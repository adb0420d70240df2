"""Tests for the file-backed manifest store."""
import json
from datetime import timedelta

import pytest

from launchpad.core.errors import NotFoundError
from launchpad.modules.manifests.schemas import DeploymentResult, DeploymentStatus, Environment
from launchpad.modules.manifests.store import ManifestStore

from conftest import make_spec

APP_ID = "3f1d2c4b-5a6e-4f70-8a91-b2c3d4e5f601"


def _success(environment: Environment, **urls) -> DeploymentResult:
    return DeploymentResult(
        stack_name=f"todo-app-{environment.stack_suffix}",
        environment=environment,
        status=DeploymentStatus.SUCCESS,
        **urls,
    )


def test_create_and_get(tmp_path):
    store = ManifestStore(str(tmp_path))
    store.create(APP_ID, "todo-app", make_spec(), "123456789012", "us-east-1")

    manifest = store.get(APP_ID)
    assert manifest.app_name == "todo-app"
    assert manifest.deployments.dev is None and manifest.deployments.prod is None
    assert store.manifest_path(APP_ID) == tmp_path / APP_ID / ".launchpad" / "manifest.json"

    on_disk = json.loads(store.manifest_path(APP_ID).read_text())
    assert on_disk["appId"] == APP_ID
    assert on_disk["spec"]["blueprint"] == "serverless"


def test_get_missing_returns_none(tmp_path):
    assert ManifestStore(str(tmp_path)).get(APP_ID) is None


def test_update_replaces_environment_entry(tmp_path):
    store = ManifestStore(str(tmp_path))
    created = store.create(APP_ID, "todo-app", make_spec(), "123456789012", "us-east-1")

    store.update(APP_ID, Environment.DEV, _success(Environment.DEV, preview_url="https://one.example.com"))
    failed = DeploymentResult(
        stack_name="todo-app-Dev",
        environment=Environment.DEV,
        status=DeploymentStatus.FAILED,
        error="CDK deploy failed",
        error_kind="InfrastructureError",
    )
    manifest = store.update(APP_ID, Environment.DEV, failed)

    assert manifest.deployments.dev.status == DeploymentStatus.FAILED
    assert manifest.deployments.dev.preview_url is None
    assert manifest.updated_at >= created.updated_at


def test_update_unknown_app_raises(tmp_path):
    with pytest.raises(NotFoundError):
        ManifestStore(str(tmp_path)).update(APP_ID, Environment.DEV, _success(Environment.DEV))


def test_remove_environment_keeps_manifest(tmp_path):
    store = ManifestStore(str(tmp_path))
    store.create(APP_ID, "todo-app", make_spec(), "123456789012", "us-east-1")
    store.update(APP_ID, Environment.DEV, _success(Environment.DEV))
    store.update(APP_ID, Environment.PROD, _success(Environment.PROD))

    store.remove_environment(APP_ID, Environment.DEV)
    store.remove_environment(APP_ID, Environment.PROD)

    manifest = store.get(APP_ID)
    assert manifest is not None
    assert manifest.deployments.dev is None and manifest.deployments.prod is None


def test_list_is_newest_first_and_skips_broken_manifests(tmp_path):
    store = ManifestStore(str(tmp_path))
    older = store.create("11111111-1111-4111-8111-111111111111", "older", make_spec("older"), "123456789012", "us-east-1")
    newer = store.create("22222222-2222-4222-8222-222222222222", "newer", make_spec("newer"), "123456789012", "us-east-1")
    # Force a deterministic ordering
    newer.created_at = older.created_at + timedelta(seconds=5)
    store._write(newer)
    store.update(newer.app_id, Environment.DEV, _success(Environment.DEV, preview_url="https://dev.example.com"))

    broken = tmp_path / "broken" / ".launchpad"
    broken.mkdir(parents=True)
    (broken / "manifest.json").write_text("{not json")

    summaries = store.list()
    assert [s.app_name for s in summaries] == ["newer", "older"]
    assert summaries[0].dev_url == "https://dev.example.com"
    assert summaries[1].dev_url is None


def test_list_without_work_dir(tmp_path):
    assert ManifestStore(str(tmp_path / "missing")).list() == []
