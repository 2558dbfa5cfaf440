"""Slot existence lookups."""

from typing import NamedTuple

import structlog

from ..exceptions import ResourceNotFoundError
from ..models import Environment, SlotExistenceSnapshot
from .control_plane import CloudControlPlane

logger = structlog.get_logger()


class SlotLookup(NamedTuple):
    exists: bool
    endpoint: str


class EnvironmentResolver:
    """Answers whether a cluster currently occupies a slot."""

    def __init__(self, control_plane: CloudControlPlane, base_name: str):
        self.control_plane = control_plane
        self.base_name = base_name

    def exists(self, slot: Environment) -> SlotLookup:
        """
        Look up the cluster for a slot.

        Only a not-found response means the slot is empty. Every other
        provider error propagates to the caller.

        Args:
            slot: Environment slot to check

        Returns:
            SlotLookup of (exists, endpoint)
        """
        cluster_id = slot.identifier(self.base_name)

        try:
            cluster = self.control_plane.describe_cluster(cluster_id)
        except ResourceNotFoundError:
            logger.debug("Slot is empty", slot=slot.value, cluster_id=cluster_id)
            return SlotLookup(False, "")

        logger.debug(
            "Slot is occupied",
            slot=slot.value,
            cluster_id=cluster_id,
            status=cluster.status,
            endpoint=cluster.endpoint,
        )
        return SlotLookup(True, cluster.endpoint)

    def snapshot(self) -> SlotExistenceSnapshot:
        lookups = {slot: self.exists(slot) for slot in Environment}

        snapshot = SlotExistenceSnapshot(
            dev_exists=lookups[Environment.DEV].exists,
            test_exists=lookups[Environment.TEST].exists,
            prod_exists=lookups[Environment.PROD].exists,
            endpoints={slot: lookup.endpoint for slot, lookup in lookups.items() if lookup.exists},
        )

        logger.info(
            "Resolved environment slots",
            base_name=self.base_name,
            dev=snapshot.dev_exists,
            test=snapshot.test_exists,
            prod=snapshot.prod_exists,
        )
        return snapshot
