"""
CloudFormation stack lifecycle operations.

Each operation submits a request, polls until the stack leaves its
in-progress state and reports a boolean outcome with a reason. Timeouts are
the exception: they raise ``OperationTimeoutError`` so callers can tell
"give it more time" apart from "check the template".
"""

import logging
from typing import Any, Callable, Dict, FrozenSet, List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from ec2.reconciler import RESTART_POLL_INTERVAL, ResourceGroupReconciler
from polling import CancellationToken, PollingConfig, poll_until

from .diagnostics import StackDiagnostics
from .errors import describe_failure, is_no_updates_error, is_stack_missing_error
from .models import (
    AUTO_SCALING_GROUP_TYPE,
    EC2_INSTANCE_TYPE,
    OperationResult,
    StackRequest,
    StackResource,
    StackSnapshot,
    StackStatus,
    namespace_outputs,
)
from .parameters import compute_update_parameters

logger = logging.getLogger(__name__)

CREATE_IN_PROGRESS: FrozenSet[StackStatus] = frozenset({StackStatus.CREATE_IN_PROGRESS})
UPDATE_IN_PROGRESS: FrozenSet[StackStatus] = frozenset(
    {StackStatus.UPDATE_IN_PROGRESS, StackStatus.UPDATE_COMPLETE_CLEANUP_IN_PROGRESS}
)
DELETE_SETTLED: FrozenSet[StackStatus] = frozenset(
    {StackStatus.DELETE_COMPLETE, StackStatus.DELETE_FAILED}
)


class StackOrchestrator:
    """Drive one named stack through create, update and delete."""

    def __init__(
        self,
        request: StackRequest,
        clients: Any,
        polling: Optional[PollingConfig] = None,
        token: Optional[CancellationToken] = None,
        reconciler: Optional[ResourceGroupReconciler] = None,
    ):
        """
        Initialize stack orchestrator.

        Args:
            request: What to deploy
            clients: Client factory bound to the target credentials and region
            polling: Interval and deadline; defaults to the request timeout
            token: Cancellation signal checked between polls
            reconciler: Auto-scaling reconciler; built from ``clients`` if omitted
        """
        self.request = request
        self.clients = clients
        self.cloudformation = clients.cloudformation
        self.polling = polling or PollingConfig.for_timeout(request.timeout)
        self.token = token or CancellationToken()
        self.diagnostics = StackDiagnostics(self.cloudformation)
        self._reconciler = reconciler
        self.snapshot: Optional[StackSnapshot] = None
        self._outputs: Dict[str, str] = {}

    @property
    def stack_name(self) -> str:
        return self.request.stack_name

    @property
    def reconciler(self) -> ResourceGroupReconciler:
        if self._reconciler is None:
            self._reconciler = ResourceGroupReconciler(
                self.clients.ec2,
                self.clients.autoscaling,
                polling=self.polling.with_interval(
                    min(self.polling.interval, RESTART_POLL_INTERVAL)
                ),
                token=self.token,
            )
        return self._reconciler

    @property
    def outputs(self) -> Dict[str, str]:
        """Outputs of the last successful create/update, keyed "<stack>_<key>"."""
        return namespace_outputs(self.stack_name, self._outputs)

    def describe_stack(self) -> Optional[StackSnapshot]:
        """Get the current state of the stack, or None if it does not exist."""
        try:
            response = self.cloudformation.describe_stacks(StackName=self.stack_name)
        except ClientError as e:
            if is_stack_missing_error(e):
                return None
            raise
        return self._find(response.get("Stacks", []))

    def _find_in_listing(self) -> Optional[StackSnapshot]:
        """Look the stack up in the unfiltered listing, which omits deleted stacks."""
        kwargs: Dict[str, Any] = {}
        while True:
            response = self.cloudformation.describe_stacks(**kwargs)
            snapshot = self._find(response.get("Stacks", []))
            if snapshot is not None or not response.get("NextToken"):
                return snapshot
            kwargs["NextToken"] = response["NextToken"]

    def _find(self, stacks: List[Dict[str, Any]]) -> Optional[StackSnapshot]:
        for stack in stacks:
            if stack.get("StackName") == self.stack_name:
                return StackSnapshot.from_response(stack)
        return None

    def list_resources(self) -> List[StackResource]:
        """List the physical resources of the stack."""
        resources = []
        paginator = self.cloudformation.get_paginator("list_stack_resources")
        for page in paginator.paginate(StackName=self.stack_name):
            for summary in page.get("StackResourceSummaries", []):
                resources.append(StackResource.from_response(summary))
        return resources

    def create(self) -> OperationResult:
        """
        Create the stack and wait for it to settle.

        Returns:
            OperationResult, successful when the stack reaches CREATE_COMPLETE

        Raises:
            OperationTimeoutError: If the stack is still being created at the deadline
        """
        logger.info(f"Creating Cloud Formation stack: {self.stack_name}")

        if not self.request.template_body:
            return self._failed("create", "A template body is required to create a stack")

        args: Dict[str, Any] = {
            "StackName": self.stack_name,
            "TemplateBody": self.request.template_body,
            "Capabilities": list(self.request.capabilities),
        }
        if self.request.parameters:
            args["Parameters"] = [p.to_api() for p in self.request.parameter_list()]

        try:
            self.cloudformation.create_stack(**args)
            return self._wait_for(
                "creation", "create", CREATE_IN_PROGRESS, StackStatus.CREATE_COMPLETE
            )
        except (ClientError, BotoCoreError) as e:
            return self._failed("create", describe_failure(e))

    def update(self) -> OperationResult:
        """
        Update the stack parameters, reusing the stored template.

        Returns:
            OperationResult, successful when the stack reaches UPDATE_COMPLETE
            or already matches the requested parameters

        Raises:
            OperationTimeoutError: If the stack is still being updated at the deadline
        """
        logger.info(f"Updating cloud formation stack: {self.stack_name}")

        current: Optional[StackSnapshot] = None
        try:
            current = self.describe_stack()
            if current is None:
                return self._failed("update", f"Stack {self.stack_name} does not exist")

            parameters = compute_update_parameters(
                current.parameters, self.request.parameters
            )
            self.cloudformation.update_stack(
                StackName=self.stack_name,
                Parameters=[p.to_api() for p in parameters],
                UsePreviousTemplate=True,
                Capabilities=list(self.request.capabilities),
            )
        except (ClientError, BotoCoreError) as e:
            if is_no_updates_error(e) and current is not None:
                logger.info(
                    f"The stack {self.stack_name} in AWS already matches the updated "
                    "parameters, no updates are needed"
                )
                self.snapshot = current
                self._outputs = current.output_dict()
                return OperationResult(True, "No updates are to be performed", self.outputs)
            return self._failed("update", describe_failure(e))

        try:
            return self._wait_for(
                "update", "update", UPDATE_IN_PROGRESS, StackStatus.UPDATE_COMPLETE
            )
        except (ClientError, BotoCoreError) as e:
            return self._failed("update", describe_failure(e))

    def delete(self) -> OperationResult:
        """
        Delete the stack and wait until it is gone.

        There is no deadline; only cancellation stops the wait early.
        """
        logger.info(f"Deleting Cloud Formation stack: {self.stack_name}")

        try:
            self.cloudformation.delete_stack(StackName=self.stack_name)
            result = poll_until(
                self._tracked(self._find_in_listing),
                lambda s: s is not None and s.status not in DELETE_SETTLED,
                self.polling.with_timeout(None),
                "stack deletion",
                self.stack_name,
                self.token,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Cloud Formation stack: {self.stack_name} failed deleting.")
            return OperationResult(False, describe_failure(e))

        if result.interrupted:
            return self._abandoned("deletion")

        if result.value is None or result.value.status == StackStatus.DELETE_COMPLETE:
            logger.info(f"Cloud Formation stack: {self.stack_name} deleted successfully")
            return OperationResult(True, f"Stack {self.stack_name} deleted")

        logger.error(f"Cloud Formation stack: {self.stack_name} failed deleting.")
        return OperationResult(
            False, result.value.status_reason or result.value.raw_status
        )

    def terminate_auto_scale_ec2_resources(
        self, wait_for_restart: Optional[bool] = None
    ) -> OperationResult:
        """
        Recycle the instances of every auto-scaling group in the stack.

        Plain EC2 instance resources are skipped. A failure here should leave
        the job degraded rather than failed.

        Raises:
            OperationTimeoutError: If waiting for restart and the deadline elapses
        """
        if wait_for_restart is None:
            wait_for_restart = self.request.wait_for_restart

        logger.info(
            "Attempting to terminate EC2 instances in any auto-scaling groups "
            f"associated with stack {self.stack_name}"
        )

        try:
            for resource in self.list_resources():
                if self.token.cancelled:
                    return self._recycling_interrupted()
                if resource.resource_type == EC2_INSTANCE_TYPE:
                    logger.info(f"Skipping shut down of individual EC2 instance {resource}")
                elif resource.resource_type == AUTO_SCALING_GROUP_TYPE:
                    logger.info(
                        f"Shutting down EC2 instances in auto scaling group {resource}"
                    )
                    if not self.reconciler.stop_instances_in_scaling_group(
                        resource.physical_id, wait_for_restart
                    ):
                        return self._recycling_interrupted()
        except (ClientError, BotoCoreError) as e:
            logger.warning(
                "AWS error while trying to shut down EC2 instances, build will be "
                f"unstable. Exception: {e}"
            )
            return OperationResult(False, describe_failure(e))

        return OperationResult(True, "Auto-scaling group instances recycled")

    def _wait_for(
        self,
        description: str,
        verb: str,
        in_progress: FrozenSet[StackStatus],
        success: StackStatus,
    ) -> OperationResult:
        try:
            result = poll_until(
                self._tracked(self.describe_stack),
                lambda s: s is not None and s.status in in_progress,
                self.polling,
                f"stack {description}",
                self.stack_name,
                self.token,
            )
        finally:
            self.diagnostics.log_events(self.stack_name)

        if result.interrupted:
            return self._abandoned(description)

        if result.value is None:
            return self._failed(verb, f"Stack {self.stack_name} not found")

        if result.value.status != success:
            return self._failed(
                verb, result.value.status_reason or result.value.raw_status
            )

        self._outputs = result.value.output_dict()
        logger.info(f"Successfully {verb}d stack: {self.stack_name}")
        return OperationResult(True, result.value.raw_status, self.outputs)

    def _tracked(
        self, query: Callable[[], Optional[StackSnapshot]]
    ) -> Callable[[], Optional[StackSnapshot]]:
        # Keeps the last observed state available after a timeout
        def poll() -> Optional[StackSnapshot]:
            self.snapshot = query()
            return self.snapshot

        return poll

    def _failed(self, verb: str, reason: str) -> OperationResult:
        logger.error(f"Failed to {verb} stack: {self.stack_name}. Reason: {reason}")
        return OperationResult(False, reason)

    def _recycling_interrupted(self) -> OperationResult:
        message = (
            f"Interrupted while recycling instances of {self.stack_name}; "
            "remaining auto-scaling groups were left untouched"
        )
        logger.warning(message)
        return OperationResult(False, message)

    def _abandoned(self, description: str) -> OperationResult:
        message = (
            f"Stopped waiting for stack {description} of {self.stack_name}; "
            "the operation continues in AWS and must be checked manually"
        )
        logger.warning(message)
        return OperationResult(False, message)
