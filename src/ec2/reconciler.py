"""
Recycle the instances of an auto-scaling group.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Set

from polling import MIN_TIMEOUT, CancellationToken, PollingConfig, poll_until

logger = logging.getLogger(__name__)

HEALTHY = "Healthy"
TERMINATED = "terminated"
RESTART_POLL_INTERVAL = 5


class ResourceGroupReconciler:
    """Terminate auto-scaling group members and wait for replacements."""

    def __init__(
        self,
        ec2: Any,
        autoscaling: Any,
        polling: Optional[PollingConfig] = None,
        token: Optional[CancellationToken] = None,
    ):
        """
        Initialize reconciler.

        Args:
            ec2: EC2 client
            autoscaling: Auto Scaling client
            polling: Interval and deadline for the wait loops
            token: Cancellation signal shared with the caller
        """
        self.ec2 = ec2
        self.autoscaling = autoscaling
        self.polling = polling or PollingConfig.for_timeout(
            MIN_TIMEOUT, interval=RESTART_POLL_INTERVAL
        )
        self.token = token or CancellationToken()

    def describe_group(self, group_name: str) -> Optional[Dict[str, Any]]:
        """Get the group description, or None if it does not exist."""
        response = self.autoscaling.describe_auto_scaling_groups(
            AutoScalingGroupNames=[group_name]
        )
        groups = response.get("AutoScalingGroups", [])
        return groups[0] if groups else None

    @staticmethod
    def healthy_count(group: Dict[str, Any], excluded: Iterable[str] = ()) -> int:
        """Count healthy members, ignoring instances in ``excluded``."""
        skip = set(excluded)
        return sum(
            1
            for instance in group.get("Instances", [])
            if instance.get("HealthStatus") == HEALTHY
            and instance.get("InstanceId") not in skip
        )

    def stop_instances_in_scaling_group(
        self, group_name: str, wait_for_restart: bool = False
    ) -> bool:
        """
        Terminate every member of a group so the group replaces them.

        When waiting, the old members are first waited on until they are
        terminated, then the group until it is back to its minimum size.

        Args:
            group_name: Auto-scaling group name (the stack resource physical id)
            wait_for_restart: Wait until the group is back to its minimum size

        Returns:
            False if a wait was cancelled, True otherwise

        Raises:
            OperationTimeoutError: If waiting and the deadline elapses
        """
        group = self.describe_group(group_name)
        if group is None:
            logger.warning(f"Auto-scaling group {group_name} not found, skipping")
            return True

        if group.get("MinSize", 0) == 0:
            logger.info(
                f"Will not stop any EC2 instances in group {group_name}, "
                "the minSize is zero"
            )
            return True

        instance_ids = [
            instance["InstanceId"] for instance in group.get("Instances", [])
        ]
        if not self.terminate_instances(instance_ids, wait_for_termination=wait_for_restart):
            return False

        if wait_for_restart:
            return self._wait_for_restart(group_name, set(instance_ids))
        return True

    def _wait_for_restart(self, group_name: str, terminated: Set[str]) -> bool:
        logger.info(
            f"Waiting for EC2 instances in auto-scaling group {group_name} to restart"
        )

        # Terminated instances can still report Healthy for a while
        def restarting(group: Optional[Dict[str, Any]]) -> bool:
            if group is None:
                return False
            return self.healthy_count(group, terminated) < group.get("MinSize", 0)

        result = poll_until(
            lambda: self.describe_group(group_name),
            restarting,
            self.polling,
            "instance restart",
            f"auto-scaling group {group_name}",
            self.token,
        )

        if result.interrupted:
            return False
        if result.value is None:
            logger.warning(f"Auto-scaling group {group_name} disappeared while waiting")
            return True
        logger.info(f"Auto-scaling group {group_name} is back to its minimum size")
        return True

    def terminate_instances(
        self, instance_ids: List[str], wait_for_termination: bool = False
    ) -> bool:
        """
        Terminate instances.

        Args:
            instance_ids: Instances to terminate
            wait_for_termination: Wait until every instance reports terminated

        Returns:
            False if the wait was cancelled, True otherwise

        Raises:
            OperationTimeoutError: If waiting and the deadline elapses
        """
        if not instance_ids:
            logger.info("No instances to terminate")
            return True

        logger.info(f"Terminating instances {instance_ids}")
        self.ec2.terminate_instances(InstanceIds=instance_ids)

        if not wait_for_termination:
            return True

        logger.info("Waiting for EC2 instances to fully terminate")

        def statuses() -> List[Dict[str, Any]]:
            response = self.ec2.describe_instance_status(
                InstanceIds=instance_ids, IncludeAllInstances=True
            )
            return response.get("InstanceStatuses", [])

        def terminating(current: List[Dict[str, Any]]) -> bool:
            return any(
                status.get("InstanceState", {}).get("Name") != TERMINATED
                for status in current
            )

        result = poll_until(
            statuses,
            terminating,
            self.polling,
            "instance termination",
            ", ".join(instance_ids),
            self.token,
        )
        return not result.interrupted
