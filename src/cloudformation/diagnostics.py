"""
CloudFormation stack event history and failure hints.
"""

import logging
from typing import Any, List

from botocore.exceptions import BotoCoreError, ClientError

from .models import StackEvent

logger = logging.getLogger(__name__)

FAILED_RESOURCE_STATUSES = ("CREATE_FAILED", "UPDATE_FAILED", "DELETE_FAILED")


class StackDiagnostics:
    """Read and explain stack events."""

    def __init__(self, cloudformation: Any):
        """Initialize diagnostics with a CloudFormation client."""
        self.cloudformation = cloudformation

    def get_events(self, stack_name: str) -> List[StackEvent]:
        """Get the full event history, oldest first."""
        events = []
        paginator = self.cloudformation.get_paginator("describe_stack_events")
        for page in paginator.paginate(StackName=stack_name):
            for event in page.get("StackEvents", []):
                events.append(StackEvent.from_response(event))

        # The API returns newest first
        events.reverse()
        return events

    def log_events(self, stack_name: str) -> List[StackEvent]:
        """Write the event history to the log. Failures here are not fatal."""
        try:
            events = self.get_events(stack_name)
        except (ClientError, BotoCoreError) as e:
            logger.warning(f"Could not read events for stack {stack_name}: {e}")
            return []

        for event in events:
            logger.info(str(event))

        for recommendation in self.recommendations(events):
            logger.info(f"Hint: {recommendation}")

        return events

    def recommendations(self, events: List[StackEvent]) -> List[str]:
        """Collect hints for every failed resource event, without duplicates."""
        result: List[str] = []
        for event in events:
            if event.resource_status not in FAILED_RESOURCE_STATUSES:
                continue
            for hint in self._get_failure_recommendations(
                event.resource_type, event.resource_status_reason or ""
            ):
                if hint not in result:
                    result.append(hint)
        return result

    def _get_failure_recommendations(
        self, resource_type: str, reason: str
    ) -> List[str]:
        """Get recommendations based on failure reason."""
        recommendations = []

        # IAM permission issues
        if "AccessDenied" in reason or "is not authorized" in reason:
            recommendations.append("Check IAM permissions for CloudFormation")

        # Capability acknowledgment
        if "Requires capabilities" in reason:
            recommendations.append(
                "The template needs CAPABILITY_NAMED_IAM; add it to the stack capabilities"
            )

        if resource_type == "AWS::AutoScaling::AutoScalingGroup":
            if "did not receive" in reason or "signal" in reason.lower():
                recommendations.append(
                    "Instances did not signal in time. Check instance user data and logs."
                )

        if resource_type.startswith("AWS::EC2::") and "DependencyViolation" in reason:
            recommendations.append(
                "VPC resources have dependencies. Check security groups and ENIs."
            )

        if "limit exceeded" in reason.lower():
            recommendations.append("An account limit was reached. Request a quota increase.")

        if "timeout" in reason.lower() or "timed out" in reason.lower():
            recommendations.append(
                "Operation timed out. Check resource logs for details."
            )

        return recommendations
