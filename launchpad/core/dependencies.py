"""
Process-wide service instances and the FastAPI dependencies that hand them out.

Everything here is built lazily from settings on first use. Tests replace
individual providers through app.dependency_overrides, or call
Services.reset() between cases.
"""
from typing import Optional

from launchpad.config import settings
from launchpad.modules.credentials.broker import CredentialBroker
from launchpad.modules.deployments.locks import RunLocks
from launchpad.modules.deployments.pipeline import DeployPipeline
from launchpad.modules.deployments.service import DeploymentService
from launchpad.modules.generation.gateway import BedrockGateway
from launchpad.modules.generation.materializer import RepositoryMaterializer
from launchpad.modules.jobs.tracker import JobTracker
from launchpad.modules.manifests.store import ManifestStore
from launchpad.modules.tenants.connect import ConnectionService
from launchpad.modules.tenants.service import TenantStore


class Services:
    _tenants: Optional[TenantStore] = None
    _broker: Optional[CredentialBroker] = None
    _tracker: Optional[JobTracker] = None
    _manifests: Optional[ManifestStore] = None
    _connection: Optional[ConnectionService] = None
    _deployments: Optional[DeploymentService] = None

    @classmethod
    def tenants(cls) -> TenantStore:
        if cls._tenants is None:
            cls._tenants = TenantStore(settings.data_dir)
        return cls._tenants

    @classmethod
    def broker(cls) -> CredentialBroker:
        if cls._broker is None:
            cls._broker = CredentialBroker()
        return cls._broker

    @classmethod
    def tracker(cls) -> JobTracker:
        if cls._tracker is None:
            cls._tracker = JobTracker(retention_seconds=settings.job_retention_seconds)
        return cls._tracker

    @classmethod
    def manifests(cls) -> ManifestStore:
        if cls._manifests is None:
            cls._manifests = ManifestStore(settings.work_dir)
        return cls._manifests

    @classmethod
    def connection(cls) -> ConnectionService:
        if cls._connection is None:
            cls._connection = ConnectionService(settings, cls.tenants(), cls.broker())
        return cls._connection

    @classmethod
    def deployments(cls) -> DeploymentService:
        if cls._deployments is None:
            cls._deployments = DeploymentService(
                settings=settings,
                tenants=cls.tenants(),
                broker=cls.broker(),
                gateway=BedrockGateway(settings),
                materializer=RepositoryMaterializer(settings),
                pipeline=DeployPipeline(settings),
                tracker=cls.tracker(),
                manifests=cls.manifests(),
                locks=RunLocks(),
            )
        return cls._deployments

    @classmethod
    def reset(cls):
        cls._tenants = None
        cls._broker = None
        cls._tracker = None
        cls._manifests = None
        cls._connection = None
        cls._deployments = None


def get_tenant_store() -> TenantStore:
    return Services.tenants()


def get_tracker() -> JobTracker:
    return Services.tracker()


def get_manifest_store() -> ManifestStore:
    return Services.manifests()


def get_connection_service() -> ConnectionService:
    return Services.connection()


def get_deployment_service() -> DeploymentService:
    return Services.deployments()
