"""
Run the stacks of a job one after another.

Stacks are settled strictly in order so that the outputs of one stack can
feed the parameters of the next through ``${<stack>_<output>}`` placeholders.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Mapping, Optional

from aws_clients import ClientFactory
from config import ConfigurationError, OrchestratorConfig, StackConfig
from polling import CancellationToken, OperationTimeoutError, PollingConfig

from .models import OperationResult, StackRequest
from .orchestrator import StackOrchestrator

logger = logging.getLogger(__name__)

PROGRESSIVE = {"create": "creating", "update": "updating"}


class JobStatus(Enum):
    """Overall outcome of a job."""

    SUCCESS = "success"
    UNSTABLE = "unstable"
    FAILURE = "failure"


@dataclass
class PipelineResult:
    """Result of running every stack in a job."""

    status: JobStatus
    outputs: Dict[str, str] = field(default_factory=dict)
    messages: List[str] = field(default_factory=list)
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return self.status == JobStatus.SUCCESS


class StackPipeline:
    """Create or update each stack of a job in order."""

    def __init__(
        self,
        config: OrchestratorConfig,
        clients: Optional[ClientFactory] = None,
        env: Optional[Mapping[str, str]] = None,
        polling: Optional[PollingConfig] = None,
        token: Optional[CancellationToken] = None,
    ):
        """
        Initialize pipeline.

        Args:
            config: Job configuration
            clients: Client factory; built from the job credentials if omitted
            env: Placeholder values; stack outputs are added as stacks complete
            polling: Polling override applied to every stack
            token: Cancellation signal shared by every wait
        """
        self.config = config
        self.env: Dict[str, str] = dict(env or {})
        self.clients = clients or ClientFactory(
            config.credentials(self.env), config.region, config.endpoint_url
        )
        self.polling = polling
        self.token = token or CancellationToken()
        self.outputs: Dict[str, str] = {}
        self.completed: List[StackOrchestrator] = []
        self.created: List[StackOrchestrator] = []

    def orchestrator_for(self, request: StackRequest) -> StackOrchestrator:
        return StackOrchestrator(
            request,
            self.clients,
            polling=self.polling or PollingConfig.for_timeout(request.timeout),
            token=self.token,
        )

    def run(self) -> PipelineResult:
        """Process every stack; stop at the first failure."""
        status = JobStatus.SUCCESS
        messages: List[str] = []

        for stack in self.config.stacks:
            if self.token.cancelled:
                message = f"Interrupted, stack {stack.name} and later stacks were not processed"
                logger.warning(message)
                messages.append(message)
                return self._result(JobStatus.FAILURE, messages)

            try:
                request = stack.to_request(self.env, self.config.base_dir, self.config.timeout)
            except ConfigurationError as e:
                messages.append(str(e))
                return self._result(JobStatus.FAILURE, messages)

            orchestrator = self.orchestrator_for(request)

            try:
                result = self._apply(stack, orchestrator)
            except OperationTimeoutError:
                message = (
                    f"ERROR {PROGRESSIVE[stack.action]} stack with name "
                    f"{request.stack_name}. Operation timed out. Try increasing the "
                    "timeout period in your stack configuration."
                )
                logger.error(message)
                messages.append(message)
                return self._result(JobStatus.FAILURE, messages, timed_out=True)

            if not result:
                messages.append(f"Stack {request.stack_name}: {result.message}")
                return self._result(JobStatus.FAILURE, messages)

            self.completed.append(orchestrator)
            if stack.action == "create":
                self.created.append(orchestrator)
            self.outputs.update(orchestrator.outputs)
            self.env.update(orchestrator.outputs)

            if stack.action == "update" and request.terminate_auto_scale_ec2_resources:
                terminated = self._terminate(orchestrator)
                if not terminated:
                    status = JobStatus.UNSTABLE
                    messages.append(
                        f"Stack {request.stack_name}: EC2 termination failed: "
                        f"{terminated.message}"
                    )

        return self._result(status, messages)

    def teardown(self) -> bool:
        """Delete auto-delete stacks created by this run, newest first."""
        if self.token.cancelled:
            logger.warning("Interrupted, skipping teardown of the stacks created by this run")
            return False

        success = True
        for orchestrator in reversed(self.created):
            if not orchestrator.request.auto_delete:
                continue
            if not orchestrator.delete():
                success = False
        return success

    def _apply(self, stack: StackConfig, orchestrator: StackOrchestrator) -> OperationResult:
        if stack.action == "update":
            return orchestrator.update()
        return orchestrator.create()

    def _terminate(self, orchestrator: StackOrchestrator) -> OperationResult:
        try:
            return orchestrator.terminate_auto_scale_ec2_resources()
        except OperationTimeoutError as e:
            logger.warning(str(e))
            return OperationResult(False, str(e))

    def _result(
        self, status: JobStatus, messages: List[str], timed_out: bool = False
    ) -> PipelineResult:
        return PipelineResult(
            status=status,
            outputs=dict(self.outputs),
            messages=messages,
            timed_out=timed_out,
        )
