"""
Error types and helpers for classifying AWS failures.

Service-level failures arrive as ``ClientError`` (the remote API rejected the
request); transport-level failures arrive as ``BotoCoreError`` (connectivity,
credentials, client-side validation).
"""

from typing import Optional

from botocore.exceptions import ClientError

NO_UPDATES_MESSAGE = "No updates are to be performed"


def is_service_error(error: Exception) -> bool:
    return isinstance(error, ClientError)


def error_message(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Message", error))


def error_code(error: ClientError) -> Optional[str]:
    return error.response.get("Error", {}).get("Code")


def status_code(error: ClientError) -> Optional[int]:
    return error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")


def is_no_updates_error(error: Exception) -> bool:
    """The API has no error code for a no-op update, only this message."""
    return is_service_error(error) and NO_UPDATES_MESSAGE in error_message(error)


def is_stack_missing_error(error: Exception) -> bool:
    return is_service_error(error) and "does not exist" in error_message(error)


def format_detailed_error(error: ClientError) -> str:
    """Format a service-level failure for the build log."""
    return (
        f"Detailed Message: {error_message(error)}\n"
        f"Status Code: {status_code(error)}\n"
        f"Error Code: {error_code(error)}\n"
    )


def describe_failure(error: Exception) -> str:
    """Reason string for a service- or transport-level failure."""
    if is_service_error(error):
        return format_detailed_error(error)
    return f"Error was: {error}"
