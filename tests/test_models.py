"""
Tests for stack data types and parameter diffing.
"""

import pytest

from cloudformation.models import (
    OperationResult,
    Parameter,
    StackRequest,
    StackSnapshot,
    StackStatus,
    namespace_outputs,
)
from cloudformation.parameters import compute_update_parameters


class TestStackStatus:
    """Test StackStatus mapping."""

    def test_known_status(self) -> None:
        """Test known statuses map to their members."""
        assert StackStatus("CREATE_COMPLETE") is StackStatus.CREATE_COMPLETE

    def test_unknown_status(self) -> None:
        """Test unmapped values resolve to UNKNOWN instead of raising."""
        assert StackStatus("SOMETHING_NEW") is StackStatus.UNKNOWN
        assert StackStatus("") is StackStatus.UNKNOWN

    @pytest.mark.parametrize(
        "status,failed,in_progress",
        [
            (StackStatus.CREATE_COMPLETE, False, False),
            (StackStatus.CREATE_IN_PROGRESS, False, True),
            (StackStatus.ROLLBACK_COMPLETE, True, False),
            (StackStatus.UPDATE_ROLLBACK_IN_PROGRESS, True, True),
            (StackStatus.DELETE_FAILED, True, False),
        ],
    )
    def test_classification(self, status: StackStatus, failed: bool, in_progress: bool) -> None:
        """Test failure and in-progress classification."""
        assert status.is_failed is failed
        assert status.is_in_progress is in_progress


class TestStackSnapshot:
    """Test StackSnapshot parsing."""

    def test_from_response(self) -> None:
        """Test a full DescribeStacks entry."""
        snapshot = StackSnapshot.from_response(
            {
                "StackName": "web",
                "StackStatus": "UPDATE_COMPLETE",
                "Outputs": [{"OutputKey": "Url", "OutputValue": "http://web"}],
                "Parameters": [{"ParameterKey": "Size", "ParameterValue": "2"}],
            }
        )

        assert snapshot.status is StackStatus.UPDATE_COMPLETE
        assert snapshot.output_dict() == {"Url": "http://web"}
        assert snapshot.parameters == (Parameter("Size", "2"),)

    def test_from_response_without_outputs(self) -> None:
        """Test a stack with no outputs or parameters."""
        snapshot = StackSnapshot.from_response(
            {"StackName": "web", "StackStatus": "CREATE_IN_PROGRESS"}
        )

        assert snapshot.output_dict() == {}
        assert snapshot.parameters == ()
        assert snapshot.status_reason is None


class TestStackRequest:
    """Test StackRequest helpers."""

    def test_effective_timeout(self) -> None:
        """Test the timeout floor."""
        assert StackRequest("web", timeout=10).effective_timeout == 300
        assert StackRequest("web", timeout=1200).effective_timeout == 1200

    def test_parameter_list_keeps_order(self) -> None:
        """Test parameters are sent in insertion order."""
        request = StackRequest("web", parameters={"B": "2", "A": "1"})

        assert [p.key for p in request.parameter_list()] == ["B", "A"]

    def test_default_capabilities(self) -> None:
        """Test IAM capability is acknowledged by default."""
        assert StackRequest("web").capabilities == ("CAPABILITY_IAM",)


class TestOutputs:
    """Test output namespacing and results."""

    def test_namespace_outputs(self) -> None:
        """Test keys are prefixed with the stack name."""
        assert namespace_outputs("net", {"VpcId": "vpc-1", "SubnetId": "subnet-1"}) == {
            "net_VpcId": "vpc-1",
            "net_SubnetId": "subnet-1",
        }

    def test_namespace_empty_outputs(self) -> None:
        """Test a stack without outputs contributes nothing."""
        assert namespace_outputs("net", {}) == {}
        assert namespace_outputs("net", None) == {}

    def test_result_truthiness(self) -> None:
        """Test results can be used directly in conditions."""
        assert OperationResult(True)
        assert not OperationResult(False, "failed")


class TestComputeUpdateParameters:
    """Test compute_update_parameters."""

    def test_changed_unchanged_and_new(self) -> None:
        """Test a changed value, an unchanged value and a new key."""
        existing = [Parameter("param1", "valueChanges"), Parameter("param2", "value2")]
        requested = {"param1": "value1", "param2": "value2", "param3": "value3"}

        result = compute_update_parameters(existing, requested)

        assert result == [
            Parameter("param1", "value1"),
            Parameter("param2", use_previous_value=True),
            Parameter("param3", "value3"),
        ]

    def test_unrequested_keys_keep_previous_value(self) -> None:
        """Test stored keys that are not requested reuse their value."""
        existing = [Parameter("Size", "2"), Parameter("Env", "prod")]

        result = compute_update_parameters(existing, {})

        assert result == [
            Parameter("Size", use_previous_value=True),
            Parameter("Env", use_previous_value=True),
        ]

    def test_no_stored_parameters(self) -> None:
        """Test every requested key is sent explicitly for a bare stack."""
        result = compute_update_parameters([], {"Env": "prod"})

        assert result == [Parameter("Env", "prod")]

    @pytest.mark.parametrize(
        "existing,requested",
        [
            ([Parameter("A", "1"), Parameter("A", "1")], {"A": "2"}),
            ([Parameter("A", "1")], {"A": "1", "B": "2"}),
            ([], {}),
        ],
    )
    def test_each_key_once(self, existing, requested) -> None:
        """Test no key appears twice and the size is the union of keys."""
        result = compute_update_parameters(existing, requested)
        keys = [p.key for p in result]

        assert len(keys) == len(set(keys))
        assert set(keys) == {p.key for p in existing} | set(requested)

    def test_api_shape(self) -> None:
        """Test the boto3 rendering of both parameter forms."""
        assert Parameter("A", "1").to_api() == {"ParameterKey": "A", "ParameterValue": "1"}
        assert Parameter("A", use_previous_value=True).to_api() == {
            "ParameterKey": "A",
            "UsePreviousValue": True,
        }
