"""
AWS client construction.

One factory per credentials+region pair; each factory owns a single boto3
session and hands out one cached client per service.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import boto3

logger = logging.getLogger(__name__)

DEFAULT_REGION = "us-east-1"


@dataclass(frozen=True)
class AwsCredentials:
    """Explicit credentials. Empty fields fall back to the boto3 credential chain."""

    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    session_token: Optional[str] = None
    profile: Optional[str] = None

    def __repr__(self) -> str:
        key = f"{self.access_key_id[:4]}..." if self.access_key_id else None
        return f"AwsCredentials(access_key_id={key!r}, profile={self.profile!r})"


class ClientFactory:
    """Create boto3 clients bound to one set of credentials and one region."""

    def __init__(
        self,
        credentials: Optional[AwsCredentials] = None,
        region: Optional[str] = None,
        endpoint_url: Optional[str] = None,
    ):
        """
        Initialize client factory.

        Args:
            credentials: Access keys or profile; None uses the default chain
            region: AWS region
            endpoint_url: Override endpoint, e.g. for a local emulator
        """
        self.credentials = credentials or AwsCredentials()
        self.region = region or DEFAULT_REGION
        self.endpoint_url = endpoint_url
        self._session = self._create_session()
        self._clients: Dict[str, Any] = {}

    def _create_session(self) -> boto3.Session:
        """Create AWS session with appropriate credentials."""
        session_args: Dict[str, Any] = {"region_name": self.region}
        if self.credentials.profile:
            session_args["profile_name"] = self.credentials.profile
        if self.credentials.access_key_id and self.credentials.secret_access_key:
            session_args["aws_access_key_id"] = self.credentials.access_key_id
            session_args["aws_secret_access_key"] = self.credentials.secret_access_key
            if self.credentials.session_token:
                session_args["aws_session_token"] = self.credentials.session_token
        return boto3.Session(**session_args)

    def client(self, service: str) -> Any:
        """Get or create AWS client for a service."""
        if service not in self._clients:
            logger.debug(f"Creating {service} client for region {self.region}")
            client_args: Dict[str, Any] = {}
            if self.endpoint_url:
                client_args["endpoint_url"] = self.endpoint_url
            self._clients[service] = self._session.client(service, **client_args)
        return self._clients[service]

    @property
    def cloudformation(self) -> Any:
        return self.client("cloudformation")

    @property
    def ec2(self) -> Any:
        return self.client("ec2")

    @property
    def autoscaling(self) -> Any:
        return self.client("autoscaling")
