"""
Data types shared by the stack orchestrator and the auto-scaling reconciler.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from polling import MIN_TIMEOUT

DEFAULT_CAPABILITIES = ("CAPABILITY_IAM",)

AUTO_SCALING_GROUP_TYPE = "AWS::AutoScaling::AutoScalingGroup"
EC2_INSTANCE_TYPE = "AWS::EC2::Instance"


class StackStatus(Enum):
    """Remote stack status. Unmapped values resolve to UNKNOWN."""

    CREATE_IN_PROGRESS = "CREATE_IN_PROGRESS"
    CREATE_FAILED = "CREATE_FAILED"
    CREATE_COMPLETE = "CREATE_COMPLETE"
    ROLLBACK_IN_PROGRESS = "ROLLBACK_IN_PROGRESS"
    ROLLBACK_FAILED = "ROLLBACK_FAILED"
    ROLLBACK_COMPLETE = "ROLLBACK_COMPLETE"
    DELETE_IN_PROGRESS = "DELETE_IN_PROGRESS"
    DELETE_FAILED = "DELETE_FAILED"
    DELETE_COMPLETE = "DELETE_COMPLETE"
    UPDATE_IN_PROGRESS = "UPDATE_IN_PROGRESS"
    UPDATE_COMPLETE_CLEANUP_IN_PROGRESS = "UPDATE_COMPLETE_CLEANUP_IN_PROGRESS"
    UPDATE_COMPLETE = "UPDATE_COMPLETE"
    UPDATE_FAILED = "UPDATE_FAILED"
    UPDATE_ROLLBACK_IN_PROGRESS = "UPDATE_ROLLBACK_IN_PROGRESS"
    UPDATE_ROLLBACK_FAILED = "UPDATE_ROLLBACK_FAILED"
    UPDATE_ROLLBACK_COMPLETE_CLEANUP_IN_PROGRESS = (
        "UPDATE_ROLLBACK_COMPLETE_CLEANUP_IN_PROGRESS"
    )
    UPDATE_ROLLBACK_COMPLETE = "UPDATE_ROLLBACK_COMPLETE"
    REVIEW_IN_PROGRESS = "REVIEW_IN_PROGRESS"
    IMPORT_IN_PROGRESS = "IMPORT_IN_PROGRESS"
    IMPORT_COMPLETE = "IMPORT_COMPLETE"
    IMPORT_ROLLBACK_IN_PROGRESS = "IMPORT_ROLLBACK_IN_PROGRESS"
    IMPORT_ROLLBACK_FAILED = "IMPORT_ROLLBACK_FAILED"
    IMPORT_ROLLBACK_COMPLETE = "IMPORT_ROLLBACK_COMPLETE"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def _missing_(cls, value: object) -> "StackStatus":
        return cls.UNKNOWN

    @property
    def is_failed(self) -> bool:
        """Check if the status reports a failure or a rollback."""
        return "FAILED" in self.value or "ROLLBACK" in self.value

    @property
    def is_in_progress(self) -> bool:
        """Check if the remote system is still working on the stack."""
        return self.value.endswith("IN_PROGRESS")


@dataclass(frozen=True)
class Parameter:
    """A single stack parameter as sent to CreateStack/UpdateStack."""

    key: str
    value: Optional[str] = None
    use_previous_value: bool = False

    def to_api(self) -> Dict[str, Any]:
        """Render in the shape boto3 expects."""
        if self.use_previous_value:
            return {"ParameterKey": self.key, "UsePreviousValue": True}
        return {"ParameterKey": self.key, "ParameterValue": self.value}

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Parameter":
        """Build from a DescribeStacks parameter entry."""
        return cls(key=data["ParameterKey"], value=data.get("ParameterValue"))


@dataclass(frozen=True)
class StackRequest:
    """
    Input for one stack operation.

    Args:
        stack_name: Resolved stack name
        template_body: Template document, required for create only
        parameters: Ordered mapping of parameter name to value
        timeout: Seconds to wait for create/update to settle
        capabilities: Capability acknowledgments sent with create/update
        terminate_auto_scale_ec2_resources: Recycle ASG instances after an update
        wait_for_restart: Wait for recycled groups to become healthy again
        auto_delete: Delete the stack when the job tears down
    """

    stack_name: str
    template_body: Optional[str] = None
    parameters: Dict[str, str] = field(default_factory=dict)
    timeout: int = MIN_TIMEOUT
    capabilities: Tuple[str, ...] = DEFAULT_CAPABILITIES
    terminate_auto_scale_ec2_resources: bool = False
    wait_for_restart: bool = False
    auto_delete: bool = False

    @property
    def effective_timeout(self) -> int:
        """Timeout floor-clamped to MIN_TIMEOUT."""
        return max(self.timeout, MIN_TIMEOUT)

    def parameter_list(self) -> List[Parameter]:
        """Request parameters in insertion order."""
        return [Parameter(key, value) for key, value in self.parameters.items()]


@dataclass(frozen=True)
class StackSnapshot:
    """Result of one DescribeStacks lookup."""

    stack_name: str
    status: StackStatus
    raw_status: str
    status_reason: Optional[str] = None
    outputs: Tuple[Tuple[str, str], ...] = ()
    parameters: Tuple[Parameter, ...] = ()

    @classmethod
    def from_response(cls, stack: Dict[str, Any]) -> "StackSnapshot":
        """Build from one entry of a DescribeStacks response."""
        raw_status = stack.get("StackStatus", "")
        return cls(
            stack_name=stack["StackName"],
            status=StackStatus(raw_status),
            raw_status=raw_status,
            status_reason=stack.get("StackStatusReason"),
            outputs=tuple(
                (output["OutputKey"], output.get("OutputValue", ""))
                for output in stack.get("Outputs") or []
            ),
            parameters=tuple(
                Parameter.from_api(param) for param in stack.get("Parameters") or []
            ),
        )

    def output_dict(self) -> Dict[str, str]:
        return dict(self.outputs)


@dataclass(frozen=True)
class StackEvent:
    event_id: str
    resource_type: str
    resource_status: str
    resource_status_reason: Optional[str] = None

    @classmethod
    def from_response(cls, event: Dict[str, Any]) -> "StackEvent":
        return cls(
            event_id=event.get("EventId", ""),
            resource_type=event.get("ResourceType", ""),
            resource_status=event.get("ResourceStatus", ""),
            resource_status_reason=event.get("ResourceStatusReason"),
        )

    def __str__(self) -> str:
        return (
            f"{self.event_id} - {self.resource_type} - "
            f"{self.resource_status} - {self.resource_status_reason}"
        )


@dataclass(frozen=True)
class StackResource:
    resource_type: str
    logical_id: str
    physical_id: Optional[str] = None

    @classmethod
    def from_response(cls, summary: Dict[str, Any]) -> "StackResource":
        return cls(
            resource_type=summary["ResourceType"],
            logical_id=summary["LogicalResourceId"],
            physical_id=summary.get("PhysicalResourceId"),
        )


@dataclass
class OperationResult:
    """Boolean outcome of a stack operation plus a human-readable reason."""

    success: bool
    message: str = ""
    outputs: Dict[str, str] = field(default_factory=dict)

    def __bool__(self) -> bool:
        return self.success


def namespace_outputs(stack_name: str, outputs: Dict[str, str]) -> Dict[str, str]:
    """Prefix output keys with the stack name to avoid collisions between stacks."""
    return {f"{stack_name}_{key}": value for key, value in (outputs or {}).items()}
