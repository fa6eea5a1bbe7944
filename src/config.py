"""
Job configuration for stack orchestration.

A job file lists the stacks to create or update, in order, together with the
credentials and region they live in. Values may reference ``${VAR}``
placeholders that are resolved against the job environment.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from string import Template
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml
from jsonschema import ValidationError, validate

from aws_clients import AwsCredentials
from cloudformation.models import StackRequest
from polling import MIN_TIMEOUT

logger = logging.getLogger(__name__)

ACTIONS = ("create", "update")

JOB_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["region", "stacks"],
    "properties": {
        "region": {"type": "string", "minLength": 1},
        "profile": {"type": "string"},
        "access_key_id": {"type": "string"},
        "secret_access_key": {"type": "string"},
        "session_token": {"type": "string"},
        "endpoint_url": {"type": "string"},
        "timeout": {"type": "integer", "minimum": 0},
        "stacks": {
            "type": "array",
            "minItems": 1,
            "items": {
                "type": "object",
                "required": ["name"],
                "properties": {
                    "name": {"type": "string", "minLength": 1},
                    "action": {"enum": list(ACTIONS)},
                    "template": {"type": "string"},
                    "parameters": {
                        "anyOf": [
                            {"type": "string"},
                            {
                                "type": "object",
                                "additionalProperties": {
                                    "type": ["string", "number", "boolean"]
                                },
                            },
                        ]
                    },
                    "timeout": {"type": "integer", "minimum": 0},
                    "auto_delete": {"type": "boolean"},
                    "terminate_auto_scale_ec2_resources": {"type": "boolean"},
                    "wait_for_restart": {"type": "boolean"},
                },
                "additionalProperties": False,
                "if": {"properties": {"action": {"const": "create"}}},
                "then": {"required": ["template"]},
            },
        },
    },
    "additionalProperties": False,
}


@dataclass
class ConfigurationError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""

    message: str
    details: Optional[str] = None

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class Placeholders(Template):
    # Braced names may contain hyphens, as stack names often do
    braceidpattern = r"[_a-z][-_a-z0-9]*"


def expand(value: str, env: Mapping[str, str]) -> str:
    """Resolve ``$VAR`` and ``${VAR}`` placeholders, leaving unknown ones as-is."""
    return Placeholders(value).safe_substitute(env)


def parse_parameters(text: Optional[str], env: Mapping[str, str]) -> Dict[str, str]:
    """
    Parse ``key=value`` pairs separated by semicolons or, failing that, commas.

    Args:
        text: Parameter string, e.g. ``"Env=prod;Size=2"``
        env: Placeholder values

    Returns:
        Ordered mapping with expanded values
    """
    if not text or not text.strip():
        return {}

    separator = ";" if ";" in text else ","
    result: Dict[str, str] = {}
    for segment in text.split(separator):
        if not segment.strip():
            continue
        key, sep, value = segment.partition("=")
        if not sep:
            raise ConfigurationError(
                "Invalid stack parameter", f"expected key=value, got '{segment.strip()}'"
            )
        result[key.strip()] = expand(value.strip(), env)
    return result


@dataclass
class StackConfig:
    """One stack entry of a job file."""

    name: str
    action: str = "create"
    template: Optional[str] = None
    parameters: Union[str, Dict[str, Any], None] = None
    timeout: Optional[int] = None
    auto_delete: bool = False
    terminate_auto_scale_ec2_resources: bool = False
    wait_for_restart: bool = False

    def resolve_parameters(self, env: Mapping[str, str]) -> Dict[str, str]:
        if isinstance(self.parameters, dict):
            return {
                key: expand(str(value), env) for key, value in self.parameters.items()
            }
        return parse_parameters(self.parameters, env)

    def read_template(self, base_dir: Path) -> Optional[str]:
        if not self.template:
            return None
        path = Path(self.template)
        if not path.is_absolute():
            path = base_dir / path
        try:
            return path.read_text()
        except OSError as e:
            raise ConfigurationError(f"Cannot read template for stack {self.name}", str(e))

    def to_request(
        self,
        env: Mapping[str, str],
        base_dir: Path,
        default_timeout: int = MIN_TIMEOUT,
    ) -> StackRequest:
        """Build a StackRequest with every placeholder resolved against ``env``."""
        return StackRequest(
            stack_name=expand(self.name, env),
            template_body=self.read_template(base_dir) if self.action == "create" else None,
            parameters=self.resolve_parameters(env),
            timeout=self.timeout if self.timeout is not None else default_timeout,
            terminate_auto_scale_ec2_resources=self.terminate_auto_scale_ec2_resources,
            wait_for_restart=self.wait_for_restart,
            auto_delete=self.auto_delete,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StackConfig":
        return cls(**data)


@dataclass
class OrchestratorConfig:
    """A full job: where to deploy and which stacks, in order."""

    region: str
    stacks: List[StackConfig] = field(default_factory=list)
    profile: Optional[str] = None
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    session_token: Optional[str] = None
    endpoint_url: Optional[str] = None
    timeout: int = MIN_TIMEOUT
    base_dir: Path = field(default_factory=Path.cwd)

    def credentials(self, env: Mapping[str, str]) -> AwsCredentials:
        """Credentials with placeholders resolved."""

        def resolved(value: Optional[str]) -> Optional[str]:
            return expand(value, env) if value else None

        return AwsCredentials(
            access_key_id=resolved(self.access_key_id),
            secret_access_key=resolved(self.secret_access_key),
            session_token=resolved(self.session_token),
            profile=resolved(self.profile),
        )

    @classmethod
    def from_dict(
        cls, data: Dict[str, Any], base_dir: Optional[Path] = None
    ) -> "OrchestratorConfig":
        """Validate and build a config from parsed YAML."""
        try:
            validate(instance=data, schema=JOB_SCHEMA)
        except ValidationError as e:
            location = "/".join(str(p) for p in e.absolute_path) or "<root>"
            raise ConfigurationError(f"Invalid job configuration at {location}", e.message)

        values = dict(data)
        values["stacks"] = [StackConfig.from_dict(s) for s in data["stacks"]]
        return cls(base_dir=base_dir or Path.cwd(), **values)


def load_config(path: Union[str, Path]) -> OrchestratorConfig:
    """Load and validate a YAML job file."""
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Job file not found: {path}")

    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Failed to parse job file {path}", str(e))

    logger.debug(f"Loaded job file {path}")
    return OrchestratorConfig.from_dict(data or {}, base_dir=path.parent.resolve())


def job_environment(extra: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """The process environment, overlaid with ``extra``."""
    env = dict(os.environ)
    if extra:
        env.update(extra)
    return env
