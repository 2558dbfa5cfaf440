"""RDS control plane client."""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, Generator, Optional

import structlog
from botocore.exceptions import BotoCoreError, ClientError

from ..exceptions import (
    ResourceAlreadyExistsError,
    ResourceNotFoundError,
    UnclassifiedProviderError,
)
from ..models import ClusterResource, InstanceResource

logger = structlog.get_logger()

NOT_FOUND_CODES = frozenset({"DBClusterNotFoundFault", "DBInstanceNotFound", "DBInstanceNotFoundFault"})
ALREADY_EXISTS_CODES = frozenset(
    {"DBClusterAlreadyExistsFault", "DBInstanceAlreadyExists", "DBInstanceAlreadyExistsFault"}
)

COPY_ON_WRITE = "copy-on-write"


class CloudControlPlane(ABC):
    """
    Operations the promoter needs from the managed database service.

    Mutating calls return the resource in its initial status; callers must
    wait for "available" before treating the operation as complete.
    """

    @abstractmethod
    def create_cluster(
        self, cluster_id: str, db_name: str, master_username: str, master_password: str
    ) -> ClusterResource: ...

    @abstractmethod
    def create_instance(
        self, cluster_id: str, instance_id: str, publicly_accessible: bool
    ) -> InstanceResource: ...

    @abstractmethod
    def clone_cluster_point_in_time(
        self,
        source_id: str,
        dest_id: str,
        use_latest_restorable_time: bool = True,
        restore_type: str = COPY_ON_WRITE,
    ) -> ClusterResource: ...

    @abstractmethod
    def rename_cluster(self, old_id: str, new_id: str) -> ClusterResource: ...

    @abstractmethod
    def rename_instance(
        self, old_id: str, new_id: str, publicly_accessible: Optional[bool] = None
    ) -> InstanceResource: ...

    @abstractmethod
    def modify_instance_accessibility(
        self, instance_id: str, publicly_accessible: bool
    ) -> InstanceResource: ...

    @abstractmethod
    def modify_cluster_password(self, cluster_id: str, new_password: str) -> ClusterResource: ...

    @abstractmethod
    def describe_cluster(self, cluster_id: str) -> ClusterResource: ...

    @abstractmethod
    def describe_instance(self, instance_id: str) -> InstanceResource: ...


def classify_client_error(error: ClientError, operation: str, identifier: str) -> Exception:
    """Map a botocore ClientError onto the promoter's error kinds."""
    err = error.response.get("Error", {})
    code = err.get("Code", "Unknown")
    message = err.get("Message", str(error))

    if code in NOT_FOUND_CODES:
        return ResourceNotFoundError(operation, identifier, code, message)
    if code in ALREADY_EXISTS_CODES:
        return ResourceAlreadyExistsError(operation, identifier, code, message)
    return UnclassifiedProviderError(operation, identifier, code, message)


@contextmanager
def translate_errors(operation: str, identifier: str) -> Generator[None, None, None]:
    try:
        yield
    except ClientError as e:
        raise classify_client_error(e, operation, identifier) from e
    except BotoCoreError as e:
        raise UnclassifiedProviderError(operation, identifier, type(e).__name__, str(e)) from e


def _cluster_from_response(data: Dict[str, Any]) -> ClusterResource:
    return ClusterResource(
        identifier=data["DBClusterIdentifier"],
        status=data.get("Status", ""),
        endpoint=data.get("Endpoint", "") or "",
        engine=data.get("Engine", ""),
    )


def _instance_from_response(data: Dict[str, Any]) -> InstanceResource:
    return InstanceResource(
        identifier=data["DBInstanceIdentifier"],
        cluster_identifier=data.get("DBClusterIdentifier", ""),
        status=data.get("DBInstanceStatus", ""),
        publicly_accessible=bool(data.get("PubliclyAccessible", False)),
    )


class RdsControlPlane(CloudControlPlane):
    """CloudControlPlane backed by a boto3 RDS client."""

    def __init__(self, client: Any, engine: str = "aurora-mysql", instance_class: str = "db.t3.medium"):
        """
        Initialize the control plane.

        Args:
            client: boto3 ``rds`` client
            engine: Engine used for new clusters and instances
            instance_class: Instance class for new instances
        """
        self.client = client
        self.engine = engine
        self.instance_class = instance_class

    def create_cluster(
        self, cluster_id: str, db_name: str, master_username: str, master_password: str
    ) -> ClusterResource:
        logger.info("Creating cluster", cluster_id=cluster_id, engine=self.engine)

        with translate_errors("CreateDBCluster", cluster_id):
            response = self.client.create_db_cluster(
                DBClusterIdentifier=cluster_id,
                DatabaseName=db_name,
                Engine=self.engine,
                MasterUsername=master_username,
                MasterUserPassword=master_password,
            )

        return _cluster_from_response(response["DBCluster"])

    def create_instance(
        self, cluster_id: str, instance_id: str, publicly_accessible: bool
    ) -> InstanceResource:
        logger.info(
            "Creating instance",
            cluster_id=cluster_id,
            instance_id=instance_id,
            publicly_accessible=publicly_accessible,
        )

        with translate_errors("CreateDBInstance", instance_id):
            response = self.client.create_db_instance(
                DBClusterIdentifier=cluster_id,
                DBInstanceIdentifier=instance_id,
                DBInstanceClass=self.instance_class,
                Engine=self.engine,
                AutoMinorVersionUpgrade=True,
                PubliclyAccessible=publicly_accessible,
            )

        return _instance_from_response(response["DBInstance"])

    def clone_cluster_point_in_time(
        self,
        source_id: str,
        dest_id: str,
        use_latest_restorable_time: bool = True,
        restore_type: str = COPY_ON_WRITE,
    ) -> ClusterResource:
        logger.info(
            "Cloning cluster",
            source_id=source_id,
            dest_id=dest_id,
            restore_type=restore_type,
        )

        with translate_errors("RestoreDBClusterToPointInTime", dest_id):
            response = self.client.restore_db_cluster_to_point_in_time(
                DBClusterIdentifier=dest_id,
                SourceDBClusterIdentifier=source_id,
                UseLatestRestorableTime=use_latest_restorable_time,
                RestoreType=restore_type,
            )

        return _cluster_from_response(response["DBCluster"])

    def rename_cluster(self, old_id: str, new_id: str) -> ClusterResource:
        logger.info("Renaming cluster", old_id=old_id, new_id=new_id)

        with translate_errors("ModifyDBCluster", old_id):
            response = self.client.modify_db_cluster(
                DBClusterIdentifier=old_id,
                NewDBClusterIdentifier=new_id,
                ApplyImmediately=True,
            )

        return _cluster_from_response(response["DBCluster"])

    def rename_instance(
        self, old_id: str, new_id: str, publicly_accessible: Optional[bool] = None
    ) -> InstanceResource:
        logger.info(
            "Renaming instance",
            old_id=old_id,
            new_id=new_id,
            publicly_accessible=publicly_accessible,
        )

        params: Dict[str, Any] = {
            "DBInstanceIdentifier": old_id,
            "NewDBInstanceIdentifier": new_id,
            "ApplyImmediately": True,
        }
        if publicly_accessible is not None:
            params["PubliclyAccessible"] = publicly_accessible

        with translate_errors("ModifyDBInstance", old_id):
            response = self.client.modify_db_instance(**params)

        return _instance_from_response(response["DBInstance"])

    def modify_instance_accessibility(
        self, instance_id: str, publicly_accessible: bool
    ) -> InstanceResource:
        logger.info(
            "Modifying instance accessibility",
            instance_id=instance_id,
            publicly_accessible=publicly_accessible,
        )

        with translate_errors("ModifyDBInstance", instance_id):
            response = self.client.modify_db_instance(
                DBInstanceIdentifier=instance_id,
                PubliclyAccessible=publicly_accessible,
                ApplyImmediately=True,
            )

        return _instance_from_response(response["DBInstance"])

    def modify_cluster_password(self, cluster_id: str, new_password: str) -> ClusterResource:
        logger.info("Resetting master password", cluster_id=cluster_id)

        with translate_errors("ModifyDBCluster", cluster_id):
            response = self.client.modify_db_cluster(
                DBClusterIdentifier=cluster_id,
                MasterUserPassword=new_password,
                ApplyImmediately=True,
            )

        return _cluster_from_response(response["DBCluster"])

    def describe_cluster(self, cluster_id: str) -> ClusterResource:
        with translate_errors("DescribeDBClusters", cluster_id):
            response = self.client.describe_db_clusters(DBClusterIdentifier=cluster_id)

        clusters = response.get("DBClusters", [])
        if not clusters:
            raise ResourceNotFoundError(
                "DescribeDBClusters", cluster_id, "DBClusterNotFoundFault", "empty response"
            )
        return _cluster_from_response(clusters[0])

    def describe_instance(self, instance_id: str) -> InstanceResource:
        with translate_errors("DescribeDBInstances", instance_id):
            response = self.client.describe_db_instances(DBInstanceIdentifier=instance_id)

        instances = response.get("DBInstances", [])
        if not instances:
            raise ResourceNotFoundError(
                "DescribeDBInstances", instance_id, "DBInstanceNotFound", "empty response"
            )
        return _instance_from_response(instances[0])
