"""Promotion planning and execution."""

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Dict, Generator, List, Optional, Sequence, Set, Tuple, Union

import structlog

from ..exceptions import (
    NothingToPromoteError,
    PromotionError,
    PromotionInProgressError,
    ResourceAlreadyExistsError,
    StepFailedError,
)
from ..models import Credential, Environment, PromotionRequest, SlotExistenceSnapshot
from .control_plane import COPY_ON_WRITE, CloudControlPlane, RdsControlPlane
from .credentials import CredentialRotator
from .resolver import EnvironmentResolver
from .session import create_rds_client
from .waiter import AsyncOperationWaiter, WaitPolicy

logger = structlog.get_logger()

# The dev target always acts, even when a dev cluster already exists: it is
# re-cloned from prod, or renamed from test, or created. Provider "already
# exists" answers make the repeated steps no-ops.
DEV_ALWAYS_REFRESHED = True

COMPLETED = "completed"
ALREADY_EXISTS = "already-exists"


@dataclass(frozen=True)
class CreateCluster:
    cluster_id: str

    def describe(self) -> str:
        return f"create cluster {self.cluster_id}"


@dataclass(frozen=True)
class CreateInstance:
    cluster_id: str
    instance_id: str
    publicly_accessible: bool

    def describe(self) -> str:
        return f"create instance {self.instance_id}"


@dataclass(frozen=True)
class CloneCluster:
    source_id: str
    dest_id: str
    restore_type: str = COPY_ON_WRITE

    def describe(self) -> str:
        return f"clone cluster {self.source_id} -> {self.dest_id}"


@dataclass(frozen=True)
class RenameCluster:
    old_id: str
    new_id: str

    def describe(self) -> str:
        return f"rename cluster {self.old_id} -> {self.new_id}"


@dataclass(frozen=True)
class RenameInstance:
    old_id: str
    new_id: str
    publicly_accessible: Optional[bool] = None

    def describe(self) -> str:
        return f"rename instance {self.old_id} -> {self.new_id}"


@dataclass(frozen=True)
class SetInstanceAccessibility:
    instance_id: str
    publicly_accessible: bool

    def describe(self) -> str:
        state = "public" if self.publicly_accessible else "private"
        return f"make instance {self.instance_id} {state}"


@dataclass(frozen=True)
class RotateCredential:
    cluster_id: str

    def describe(self) -> str:
        return f"rotate credential for {self.cluster_id}"


Action = Union[
    CreateCluster,
    CreateInstance,
    CloneCluster,
    RenameCluster,
    RenameInstance,
    SetInstanceAccessibility,
    RotateCredential,
]


@dataclass(frozen=True)
class PromotionPlan:
    target: Environment
    branch: str
    actions: Tuple[Action, ...]
    reason: str = ""

    @property
    def noop(self) -> bool:
        return not self.actions


@dataclass(frozen=True)
class Transition:
    """
    One row of the transition table.

    ``applies`` selects the row from the snapshot; ``requires`` names a slot
    that must hold a cluster for the row's actions to make sense.
    """

    branch: str
    applies: Callable[[SlotExistenceSnapshot], bool]
    build: Callable[[PromotionRequest], Tuple[Action, ...]]
    reason: str = ""
    requires: Optional[Environment] = None


def _always(snapshot: SlotExistenceSnapshot) -> bool:
    return True


def _nothing(request: PromotionRequest) -> Tuple[Action, ...]:
    return ()


def _clone_prod_to_dev(request: PromotionRequest) -> Tuple[Action, ...]:
    prod = request.identifier(Environment.PROD)
    dev = request.identifier(Environment.DEV)
    return (
        CloneCluster(prod, dev),
        CreateInstance(dev, dev, publicly_accessible=True),
        RotateCredential(dev),
    )


def _rename_test_to_dev(request: PromotionRequest) -> Tuple[Action, ...]:
    test = request.identifier(Environment.TEST)
    dev = request.identifier(Environment.DEV)
    return (
        RenameCluster(test, dev),
        RenameInstance(test, dev, publicly_accessible=True),
        RotateCredential(dev),
    )


def _create_dev(request: PromotionRequest) -> Tuple[Action, ...]:
    dev = request.identifier(Environment.DEV)
    return (
        CreateCluster(dev),
        CreateInstance(dev, dev, publicly_accessible=True),
    )


def _rename_dev_to_test(request: PromotionRequest) -> Tuple[Action, ...]:
    dev = request.identifier(Environment.DEV)
    test = request.identifier(Environment.TEST)
    return (
        RenameCluster(dev, test),
        RenameInstance(dev, test),
        SetInstanceAccessibility(test, publicly_accessible=False),
    )


def _rename_test_to_prod(request: PromotionRequest) -> Tuple[Action, ...]:
    test = request.identifier(Environment.TEST)
    prod = request.identifier(Environment.PROD)
    return (
        RenameCluster(test, prod),
        RenameInstance(test, prod),
    )


# Rows are evaluated in order; the first row that applies wins.
TRANSITIONS: Dict[Environment, Sequence[Transition]] = {
    Environment.DEV: (
        Transition("clone-prod", lambda s: s.prod_exists, _clone_prod_to_dev),
        Transition("rename-test", lambda s: s.test_exists, _rename_test_to_dev),
        Transition("create-fresh", _always, _create_dev),
    ),
    Environment.TEST: (
        Transition(
            "already-present",
            lambda s: s.test_exists,
            _nothing,
            reason="Test cluster already exists, no further action required.",
        ),
        Transition("rename-dev", _always, _rename_dev_to_test, requires=Environment.DEV),
    ),
    Environment.PROD: (
        Transition(
            "already-present",
            lambda s: s.prod_exists,
            _nothing,
            reason="Prod cluster already exists, no further action required.",
        ),
        Transition("rename-test", _always, _rename_test_to_prod, requires=Environment.TEST),
    ),
}


def plan(
    request: PromotionRequest,
    snapshot: SlotExistenceSnapshot,
    dev_always_refreshed: bool = DEV_ALWAYS_REFRESHED,
) -> PromotionPlan:
    """
    Select the action sequence for a request.

    Depends only on the target, the base name and the three existence flags.

    Raises:
        NothingToPromoteError: If the selected row's source slot is empty
    """
    target = request.target

    if target is Environment.DEV and snapshot.dev_exists and not dev_always_refreshed:
        return PromotionPlan(
            target, "already-present", (), "Dev cluster already exists, no further action required."
        )

    for transition in TRANSITIONS[target]:
        if not transition.applies(snapshot):
            continue

        if transition.requires is not None and not snapshot.exists(transition.requires):
            raise NothingToPromoteError(
                target.value,
                transition.requires.value,
                request.identifier(transition.requires),
            )

        return PromotionPlan(target, transition.branch, transition.build(request), transition.reason)

    # Every table ends with an unconditional row.
    raise AssertionError(f"No transition for {target.value}")


@dataclass
class StepOutcome:
    action: Action
    result: str
    status: str = ""
    endpoint: str = ""


@dataclass
class PromotionResult:
    request: PromotionRequest
    snapshot: SlotExistenceSnapshot
    plan: PromotionPlan
    outcomes: List[StepOutcome] = field(default_factory=list)
    endpoint: str = ""
    credential: Optional[Credential] = None

    @property
    def noop(self) -> bool:
        return self.plan.noop


class PromotionFence:
    """Rejects a second concurrent promotion for the same base name."""

    def __init__(self):
        self._lock = threading.Lock()
        self._active: Set[str] = set()

    @contextmanager
    def hold(self, base_name: str) -> Generator[None, None, None]:
        with self._lock:
            if base_name in self._active:
                raise PromotionInProgressError(base_name)
            self._active.add(base_name)

        try:
            yield
        finally:
            with self._lock:
                self._active.discard(base_name)


_default_fence = PromotionFence()


class PromotionStateMachine:
    """Moves the cluster for a base name into the requested environment slot."""

    def __init__(
        self,
        control_plane: CloudControlPlane,
        base_name: str,
        db_name: str,
        master_username: str,
        waiter: Optional[AsyncOperationWaiter] = None,
        rotator: Optional[CredentialRotator] = None,
        resolver: Optional[EnvironmentResolver] = None,
        fence: Optional[PromotionFence] = None,
        dev_always_refreshed: bool = DEV_ALWAYS_REFRESHED,
    ):
        """
        Initialize the state machine.

        Args:
            control_plane: Control plane client
            base_name: Cluster base name; prod uses it unchanged
            db_name: Database created inside a fresh cluster
            master_username: Master user for a fresh cluster
            waiter: Waiter used after every mutating step
            rotator: Credential rotator for the dev paths
            resolver: Slot resolver
            fence: Guard against concurrent runs for the same base name
            dev_always_refreshed: Act on the dev target even when dev exists
        """
        self.control_plane = control_plane
        self.base_name = base_name
        self.db_name = db_name
        self.master_username = master_username
        self.waiter = waiter or AsyncOperationWaiter()
        self.rotator = rotator or CredentialRotator(control_plane, self.waiter)
        self.resolver = resolver or EnvironmentResolver(control_plane, base_name)
        self.fence = fence or _default_fence
        self.dev_always_refreshed = dev_always_refreshed

        self._handlers: Dict[type, Callable[[Action, PromotionResult], StepOutcome]] = {
            CreateCluster: self._create_cluster,
            CreateInstance: self._create_instance,
            CloneCluster: self._clone_cluster,
            RenameCluster: self._rename_cluster,
            RenameInstance: self._rename_instance,
            SetInstanceAccessibility: self._set_accessibility,
            RotateCredential: self._rotate_credential,
        }

    def resolve(self) -> SlotExistenceSnapshot:
        try:
            return self.resolver.snapshot()
        except PromotionError as e:
            raise StepFailedError("resolve environment slots", e) from e

    def preview(self, target: Environment) -> PromotionPlan:
        """Resolve the slots and return the plan without running it."""
        request = PromotionRequest(target=target, base_name=self.base_name)
        return plan(request, self.resolve(), self.dev_always_refreshed)

    def promote(self, target: Environment) -> PromotionResult:
        """
        Resolve the slots, plan, and run every step to completion.

        Args:
            target: Environment slot to promote into

        Returns:
            PromotionResult with per-step outcomes

        Raises:
            StepFailedError: If slot resolution or any step fails
            NothingToPromoteError: If the source slot is empty
            PromotionInProgressError: If another run holds the base name
        """
        request = PromotionRequest(target=target, base_name=self.base_name)
        log = logger.bind(base_name=self.base_name, target=target.value)

        with self.fence.hold(self.base_name):
            snapshot = self.resolve()
            promotion_plan = plan(request, snapshot, self.dev_always_refreshed)
            result = PromotionResult(
                request=request,
                snapshot=snapshot,
                plan=promotion_plan,
                endpoint=snapshot.endpoint(target),
            )

            if promotion_plan.noop:
                log.info("Nothing to do", branch=promotion_plan.branch, reason=promotion_plan.reason)
                return result

            log.info(
                "Starting promotion",
                branch=promotion_plan.branch,
                steps=[action.describe() for action in promotion_plan.actions],
            )

            for action in promotion_plan.actions:
                result.outcomes.append(self._run_step(action, result))

            log.info("Promotion complete", branch=promotion_plan.branch, endpoint=result.endpoint)
            return result

    def _run_step(self, action: Action, result: PromotionResult) -> StepOutcome:
        step = action.describe()
        logger.info("Running step", step=step)

        try:
            outcome = self._handlers[type(action)](action, result)
        except PromotionError as e:
            logger.error("Step failed", step=step, error=str(e))
            raise StepFailedError(step, e, last_status=getattr(e, "last_status", None)) from e

        logger.info("Step finished", step=step, result=outcome.result, status=outcome.status)
        return outcome

    def _already_exists(self, action: Action, error: ResourceAlreadyExistsError) -> StepOutcome:
        logger.warning("Resource already exists, no action required", step=action.describe(), code=error.code)
        return StepOutcome(action, ALREADY_EXISTS)

    def _create_cluster(self, action: CreateCluster, result: PromotionResult) -> StepOutcome:
        credential = self.rotator.generate(action.cluster_id)

        try:
            self.control_plane.create_cluster(
                action.cluster_id, self.db_name, self.master_username, credential.reveal()
            )
        except ResourceAlreadyExistsError as e:
            return self._already_exists(action, e)

        cluster = self.waiter.wait_for_cluster(
            self.control_plane, action.cluster_id, step=action.describe()
        )
        result.credential = credential
        result.endpoint = cluster.endpoint
        return StepOutcome(action, COMPLETED, cluster.status, cluster.endpoint)

    def _create_instance(self, action: CreateInstance, result: PromotionResult) -> StepOutcome:
        try:
            self.control_plane.create_instance(
                action.cluster_id, action.instance_id, action.publicly_accessible
            )
        except ResourceAlreadyExistsError as e:
            return self._already_exists(action, e)

        instance = self.waiter.wait_for_instance(
            self.control_plane, action.instance_id, step=action.describe()
        )
        return StepOutcome(action, COMPLETED, instance.status)

    def _clone_cluster(self, action: CloneCluster, result: PromotionResult) -> StepOutcome:
        try:
            self.control_plane.clone_cluster_point_in_time(
                action.source_id,
                action.dest_id,
                use_latest_restorable_time=True,
                restore_type=action.restore_type,
            )
        except ResourceAlreadyExistsError as e:
            return self._already_exists(action, e)

        cluster = self.waiter.wait_for_cluster(
            self.control_plane, action.dest_id, step=action.describe()
        )
        result.endpoint = cluster.endpoint
        return StepOutcome(action, COMPLETED, cluster.status, cluster.endpoint)

    def _rename_cluster(self, action: RenameCluster, result: PromotionResult) -> StepOutcome:
        try:
            self.control_plane.rename_cluster(action.old_id, action.new_id)
        except ResourceAlreadyExistsError as e:
            return self._already_exists(action, e)

        cluster = self.waiter.wait_for_cluster(
            self.control_plane, action.new_id, step=action.describe(), after_rename=True
        )
        result.endpoint = cluster.endpoint
        return StepOutcome(action, COMPLETED, cluster.status, cluster.endpoint)

    def _rename_instance(self, action: RenameInstance, result: PromotionResult) -> StepOutcome:
        try:
            self.control_plane.rename_instance(
                action.old_id, action.new_id, publicly_accessible=action.publicly_accessible
            )
        except ResourceAlreadyExistsError as e:
            return self._already_exists(action, e)

        instance = self.waiter.wait_for_instance(
            self.control_plane, action.new_id, step=action.describe(), after_rename=True
        )
        return StepOutcome(action, COMPLETED, instance.status)

    def _set_accessibility(
        self, action: SetInstanceAccessibility, result: PromotionResult
    ) -> StepOutcome:
        self.control_plane.modify_instance_accessibility(
            action.instance_id, action.publicly_accessible
        )
        instance = self.waiter.wait_for_instance(
            self.control_plane, action.instance_id, step=action.describe()
        )
        return StepOutcome(action, COMPLETED, instance.status)

    def _rotate_credential(self, action: RotateCredential, result: PromotionResult) -> StepOutcome:
        result.credential = self.rotator.rotate(action.cluster_id, step=action.describe())
        return StepOutcome(action, COMPLETED)


# Convenience functions
def build_state_machine(
    site,
    settings,
    listener=None,
    cancel_event: Optional[threading.Event] = None,
    client=None,
) -> PromotionStateMachine:
    """
    Wire a PromotionStateMachine from the site config and runtime settings.

    Args:
        site: SiteConfig read from the config file
        settings: Runtime Settings
        listener: Optional callback for waiter status events
        cancel_event: Optional event that cancels any running wait
        client: Optional boto3 RDS client; built from the settings if omitted

    Returns:
        PromotionStateMachine
    """
    if client is None:
        client = create_rds_client(
            site.aws_region, role_arn=settings.role_arn, external_id=settings.external_id
        )

    control_plane = RdsControlPlane(
        client, engine=settings.engine, instance_class=settings.instance_class
    )
    waiter = AsyncOperationWaiter(
        policy=WaitPolicy.from_settings(settings),
        listener=listener,
        cancel_event=cancel_event,
    )
    rotator = CredentialRotator(
        control_plane,
        waiter,
        length=settings.password_length,
        digits=settings.password_digits,
    )

    return PromotionStateMachine(
        control_plane,
        base_name=site.base_name,
        db_name=site.db_name,
        master_username=site.db_user,
        waiter=waiter,
        rotator=rotator,
    )
