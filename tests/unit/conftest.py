from typing import Dict, List, Optional, Tuple

import pytest

from promoter.engine.control_plane import CloudControlPlane
from promoter.engine.credentials import CredentialRotator
from promoter.engine.state_machine import PromotionFence, PromotionStateMachine
from promoter.engine.waiter import AsyncOperationWaiter, Clock, WaitPolicy
from promoter.exceptions import ResourceAlreadyExistsError, ResourceNotFoundError
from promoter.models import AVAILABLE, ClusterResource, InstanceResource

BASE_NAME = "sitedb"

MUTATING_CALLS = {
    "create_cluster",
    "create_instance",
    "clone_cluster_point_in_time",
    "rename_cluster",
    "rename_instance",
    "modify_instance_accessibility",
    "modify_cluster_password",
}


class FakeClock(Clock):
    def __init__(self):
        self.now = 0.0
        self.sleeps: List[float] = []

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeControlPlane(CloudControlPlane):
    """
    In-memory control plane that records every call.

    Mutated resources report ``busy_status`` for ``polls_until_available``
    describes before turning "available". Renamed identifiers stay
    unresolvable for ``rename_invisible_polls`` describes.
    """

    def __init__(self, polls_until_available: int = 1, rename_invisible_polls: int = 0):
        self.clusters: Dict[str, ClusterResource] = {}
        self.instances: Dict[str, InstanceResource] = {}
        self.calls: List[Tuple[str, tuple]] = []
        self.polls_until_available = polls_until_available
        self.rename_invisible_polls = rename_invisible_polls
        self.errors: Dict[str, Exception] = {}
        self.describe_errors: Dict[str, Exception] = {}
        self._pending: Dict[str, int] = {}
        self._invisible: Dict[str, int] = {}

    # Helpers
    def add_slot(self, identifier: str, endpoint: Optional[str] = None) -> None:
        self.clusters[identifier] = ClusterResource(
            identifier, AVAILABLE, endpoint or f"{identifier}.cluster.example.com", "aurora-mysql"
        )
        self.instances[identifier] = InstanceResource(identifier, identifier, AVAILABLE)

    def mutating_calls(self) -> List[Tuple[str, tuple]]:
        return [call for call in self.calls if call[0] in MUTATING_CALLS]

    def _record(self, name: str, *args) -> None:
        self.calls.append((name, args))
        if name in self.errors:
            raise self.errors[name]

    def _busy(self, identifier: str, resource, status: str) -> None:
        resource.status = status
        self._pending[identifier] = self.polls_until_available

    def _tick(self, identifier: str, resource) -> None:
        remaining = self._pending.get(identifier, 0)
        if remaining <= 0:
            resource.status = AVAILABLE
        else:
            self._pending[identifier] = remaining - 1

    def _check_visible(self, identifier: str, operation: str, code: str) -> None:
        if self._invisible.get(identifier, 0) > 0:
            self._invisible[identifier] -= 1
            raise ResourceNotFoundError(operation, identifier, code, "not yet visible")

    # CloudControlPlane
    def create_cluster(self, cluster_id, db_name, master_username, master_password):
        self._record("create_cluster", cluster_id, db_name, master_username, master_password)
        if cluster_id in self.clusters:
            raise ResourceAlreadyExistsError(
                "CreateDBCluster", cluster_id, "DBClusterAlreadyExistsFault", "exists"
            )
        cluster = ClusterResource(cluster_id, "creating", f"{cluster_id}.cluster.example.com")
        self.clusters[cluster_id] = cluster
        self._busy(cluster_id, cluster, "creating")
        return cluster

    def create_instance(self, cluster_id, instance_id, publicly_accessible):
        self._record("create_instance", cluster_id, instance_id, publicly_accessible)
        if instance_id in self.instances:
            raise ResourceAlreadyExistsError(
                "CreateDBInstance", instance_id, "DBInstanceAlreadyExists", "exists"
            )
        instance = InstanceResource(instance_id, cluster_id, "creating", publicly_accessible)
        self.instances[instance_id] = instance
        self._busy(instance_id, instance, "creating")
        return instance

    def clone_cluster_point_in_time(
        self, source_id, dest_id, use_latest_restorable_time=True, restore_type="copy-on-write"
    ):
        self._record(
            "clone_cluster_point_in_time", source_id, dest_id, use_latest_restorable_time, restore_type
        )
        if dest_id in self.clusters:
            raise ResourceAlreadyExistsError(
                "RestoreDBClusterToPointInTime", dest_id, "DBClusterAlreadyExistsFault", "exists"
            )
        if source_id not in self.clusters:
            raise ResourceNotFoundError(
                "RestoreDBClusterToPointInTime", source_id, "DBClusterNotFoundFault", "missing"
            )
        cluster = ClusterResource(dest_id, "creating", f"{dest_id}.cluster.example.com")
        self.clusters[dest_id] = cluster
        self._busy(dest_id, cluster, "creating")
        return cluster

    def rename_cluster(self, old_id, new_id):
        self._record("rename_cluster", old_id, new_id)
        if new_id in self.clusters:
            raise ResourceAlreadyExistsError(
                "ModifyDBCluster", old_id, "DBClusterAlreadyExistsFault", "exists"
            )
        if old_id not in self.clusters:
            raise ResourceNotFoundError("ModifyDBCluster", old_id, "DBClusterNotFoundFault", "missing")
        cluster = self.clusters.pop(old_id)
        cluster.identifier = new_id
        cluster.endpoint = f"{new_id}.cluster.example.com"
        self.clusters[new_id] = cluster
        self._busy(new_id, cluster, "renaming")
        self._invisible[new_id] = self.rename_invisible_polls
        return cluster

    def rename_instance(self, old_id, new_id, publicly_accessible=None):
        self._record("rename_instance", old_id, new_id, publicly_accessible)
        if new_id in self.instances:
            raise ResourceAlreadyExistsError(
                "ModifyDBInstance", old_id, "DBInstanceAlreadyExists", "exists"
            )
        if old_id not in self.instances:
            raise ResourceNotFoundError("ModifyDBInstance", old_id, "DBInstanceNotFound", "missing")
        instance = self.instances.pop(old_id)
        instance.identifier = new_id
        if publicly_accessible is not None:
            instance.publicly_accessible = publicly_accessible
        self.instances[new_id] = instance
        self._busy(new_id, instance, "renaming")
        self._invisible[new_id] = self.rename_invisible_polls
        return instance

    def modify_instance_accessibility(self, instance_id, publicly_accessible):
        self._record("modify_instance_accessibility", instance_id, publicly_accessible)
        if instance_id not in self.instances:
            raise ResourceNotFoundError("ModifyDBInstance", instance_id, "DBInstanceNotFound", "missing")
        instance = self.instances[instance_id]
        instance.publicly_accessible = publicly_accessible
        self._busy(instance_id, instance, "modifying")
        return instance

    def modify_cluster_password(self, cluster_id, new_password):
        self._record("modify_cluster_password", cluster_id, new_password)
        if cluster_id not in self.clusters:
            raise ResourceNotFoundError("ModifyDBCluster", cluster_id, "DBClusterNotFoundFault", "missing")
        cluster = self.clusters[cluster_id]
        self._busy(cluster_id, cluster, "resetting-master-credentials")
        return cluster

    def describe_cluster(self, cluster_id):
        self.calls.append(("describe_cluster", (cluster_id,)))
        if cluster_id in self.describe_errors:
            raise self.describe_errors[cluster_id]
        self._check_visible(cluster_id, "DescribeDBClusters", "DBClusterNotFoundFault")
        if cluster_id not in self.clusters:
            raise ResourceNotFoundError(
                "DescribeDBClusters", cluster_id, "DBClusterNotFoundFault", "missing"
            )
        cluster = self.clusters[cluster_id]
        self._tick(cluster_id, cluster)
        return cluster

    def describe_instance(self, instance_id):
        self.calls.append(("describe_instance", (instance_id,)))
        if instance_id in self.describe_errors:
            raise self.describe_errors[instance_id]
        self._check_visible(instance_id, "DescribeDBInstances", "DBInstanceNotFound")
        if instance_id not in self.instances:
            raise ResourceNotFoundError(
                "DescribeDBInstances", instance_id, "DBInstanceNotFound", "missing"
            )
        instance = self.instances[instance_id]
        self._tick(instance_id, instance)
        return instance


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def events():
    return []


@pytest.fixture
def policy():
    return WaitPolicy(
        poll_interval=10.0,
        rename_settle_delay=40.0,
        not_found_retry_interval=2.0,
        max_not_found_retries=5,
        max_polls=20,
        timeout=3600.0,
    )


@pytest.fixture
def waiter(clock, policy, events):
    return AsyncOperationWaiter(clock=clock, policy=policy, listener=events.append)


@pytest.fixture
def control_plane():
    return FakeControlPlane()


@pytest.fixture
def make_machine(control_plane, waiter):
    def factory(cp: Optional[FakeControlPlane] = None, **kwargs) -> PromotionStateMachine:
        cp = cp or control_plane
        rotator = CredentialRotator(cp, waiter, generator=lambda length, digits: "Secret12345abcdeFGHIJ")
        kwargs.setdefault("fence", PromotionFence())
        return PromotionStateMachine(
            cp,
            base_name=BASE_NAME,
            db_name=BASE_NAME,
            master_username="admin",
            waiter=waiter,
            rotator=rotator,
            **kwargs,
        )

    return factory
