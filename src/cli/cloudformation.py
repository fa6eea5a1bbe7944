#!/usr/bin/env python3
"""
CloudFormation stack orchestration CLI commands.
"""

import signal
import sys
from typing import Dict, Optional

import click
from botocore.exceptions import BotoCoreError, ClientError

from aws_clients import AwsCredentials, ClientFactory
from cloudformation import StackOrchestrator, StackRequest
from cloudformation.errors import describe_failure
from cloudformation.models import OperationResult, namespace_outputs
from cloudformation.pipeline import JobStatus, StackPipeline
from config import ConfigurationError, expand, job_environment, load_config, parse_parameters
from polling import MIN_TIMEOUT, CancellationToken, OperationTimeoutError, PollingConfig

EXIT_FAILURE = 1
EXIT_UNSTABLE = 3
EXIT_TIMEOUT = 4


def _cancel_on_interrupt(token: CancellationToken) -> None:
    """Turn Ctrl+C into a cooperative cancellation of the current wait."""

    def handler(signum, frame) -> None:
        click.echo("Interrupted, abandoning the current wait...", err=True)
        token.cancel()

    signal.signal(signal.SIGINT, handler)


def _echo_outputs(outputs: Dict[str, str]) -> None:
    for key, value in outputs.items():
        click.echo(f"{key}={value}")


def _polling(timeout: int, no_wait: bool) -> PollingConfig:
    if no_wait:
        return PollingConfig.no_wait()
    return PollingConfig.for_timeout(timeout)


def _build(
    stack_name: str,
    region: Optional[str],
    profile: Optional[str],
    timeout: int,
    no_wait: bool,
    parameters: Optional[str] = None,
    template_file: Optional[str] = None,
) -> StackOrchestrator:
    env = job_environment()
    template_body = None
    if template_file:
        with open(template_file, "r") as f:
            template_body = f.read()

    request = StackRequest(
        stack_name=expand(stack_name, env),
        template_body=template_body,
        parameters=parse_parameters(parameters, env),
        timeout=timeout,
    )
    clients = ClientFactory(AwsCredentials(profile=profile), region)
    token = CancellationToken()
    _cancel_on_interrupt(token)
    return StackOrchestrator(request, clients, polling=_polling(timeout, no_wait), token=token)


def _finish(result: OperationResult, outputs: bool = True) -> None:
    if not result:
        click.echo(f"❌ {result.message}", err=True)
        sys.exit(EXIT_FAILURE)
    if outputs:
        _echo_outputs(result.outputs)


def stack_options(func):
    """Options shared by every single-stack command."""
    func = click.option(
        "--no-wait", is_flag=True, help="Poll without delay or deadline (testing only)"
    )(func)
    func = click.option(
        "--timeout",
        "-t",
        type=int,
        default=MIN_TIMEOUT,
        show_default=True,
        help=f"Seconds to wait for the stack (minimum {MIN_TIMEOUT})",
    )(func)
    func = click.option("--profile", help="AWS profile to use")(func)
    func = click.option("--region", help="AWS region")(func)
    func = click.option(
        "--stack-name", "-s", required=True, help="CloudFormation stack name"
    )(func)
    return func


@click.group()
def main() -> None:
    """CloudFormation stack orchestration commands."""
    pass


@main.command()
@stack_options
@click.option(
    "--template-file",
    "-f",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="Template document",
)
@click.option("--parameters", "-p", help="Parameters as 'k=v;k2=v2' or 'k=v,k2=v2'")
def create(stack_name, region, profile, timeout, no_wait, template_file, parameters) -> None:
    """Create a stack and print its outputs."""
    try:
        orchestrator = _build(
            stack_name, region, profile, timeout, no_wait, parameters, template_file
        )
        _finish(orchestrator.create())
    except OperationTimeoutError as e:
        click.echo(f"ERROR creating stack with name {stack_name}. {e}", err=True)
        sys.exit(EXIT_TIMEOUT)
    except ConfigurationError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_FAILURE)


@main.command()
@stack_options
@click.option("--parameters", "-p", help="Parameters as 'k=v;k2=v2' or 'k=v,k2=v2'")
@click.option(
    "--terminate-asg-instances",
    is_flag=True,
    help="Recycle auto-scaling group instances after the update",
)
@click.option(
    "--wait-for-restart",
    is_flag=True,
    help="Wait for recycled groups to be healthy again",
)
def update(
    stack_name,
    region,
    profile,
    timeout,
    no_wait,
    parameters,
    terminate_asg_instances,
    wait_for_restart,
) -> None:
    """Update stack parameters, keeping the current template."""
    try:
        orchestrator = _build(stack_name, region, profile, timeout, no_wait, parameters)
        result = orchestrator.update()
        _finish(result)
    except OperationTimeoutError as e:
        click.echo(f"ERROR updating stack with name {stack_name}. {e}", err=True)
        sys.exit(EXIT_TIMEOUT)
    except ConfigurationError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_FAILURE)

    if terminate_asg_instances:
        try:
            terminated = orchestrator.terminate_auto_scale_ec2_resources(wait_for_restart)
        except OperationTimeoutError as e:
            terminated = OperationResult(False, str(e))
        if not terminated:
            click.echo(f"⚠️  EC2 termination failed: {terminated.message}", err=True)
            sys.exit(EXIT_UNSTABLE)


@main.command()
@stack_options
def delete(stack_name, region, profile, timeout, no_wait) -> None:
    """Delete a stack and wait until it is gone."""
    orchestrator = _build(stack_name, region, profile, timeout, no_wait)
    _finish(orchestrator.delete(), outputs=False)
    click.echo(f"✅ Stack {orchestrator.stack_name} deleted")


@main.command()
@stack_options
def outputs(stack_name, region, profile, timeout, no_wait) -> None:
    """Print the current outputs of a stack as STACK_KEY=VALUE lines."""
    orchestrator = _build(stack_name, region, profile, timeout, no_wait)
    try:
        snapshot = orchestrator.describe_stack()
    except (ClientError, BotoCoreError) as e:
        click.echo(f"Error: {describe_failure(e)}", err=True)
        sys.exit(EXIT_FAILURE)

    if snapshot is None:
        click.echo(f"Stack {orchestrator.stack_name} does not exist", err=True)
        sys.exit(EXIT_FAILURE)
    _echo_outputs(namespace_outputs(snapshot.stack_name, snapshot.output_dict()))


@main.command("terminate-asg")
@stack_options
@click.option(
    "--wait-for-restart",
    is_flag=True,
    help="Wait for each group to be back at its minimum size",
)
def terminate_asg(stack_name, region, profile, timeout, no_wait, wait_for_restart) -> None:
    """Terminate the instances of every auto-scaling group in a stack."""
    orchestrator = _build(stack_name, region, profile, timeout, no_wait)
    try:
        result = orchestrator.terminate_auto_scale_ec2_resources(wait_for_restart)
    except OperationTimeoutError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_TIMEOUT)
    if not result:
        click.echo(f"⚠️  {result.message}", err=True)
        sys.exit(EXIT_UNSTABLE)
    click.echo(f"✅ {result.message}")


@main.command()
@click.argument("job_file", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--teardown", is_flag=True, help="Delete auto_delete stacks when the run ends"
)
@click.option("--no-wait", is_flag=True, help="Poll without delay or deadline (testing only)")
def run(job_file, teardown, no_wait) -> None:
    """Create or update every stack listed in JOB_FILE, in order."""
    try:
        config = load_config(job_file)
    except ConfigurationError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_FAILURE)

    token = CancellationToken()
    _cancel_on_interrupt(token)
    pipeline = StackPipeline(
        config,
        env=job_environment(),
        polling=PollingConfig.no_wait() if no_wait else None,
        token=token,
    )

    try:
        result = pipeline.run()
    finally:
        if teardown and not pipeline.teardown():
            click.echo("⚠️  Some stacks could not be deleted", err=True)

    _echo_outputs(result.outputs)
    for message in result.messages:
        click.echo(message, err=True)

    if result.status == JobStatus.FAILURE:
        sys.exit(EXIT_TIMEOUT if result.timed_out else EXIT_FAILURE)
    if result.status == JobStatus.UNSTABLE:
        sys.exit(EXIT_UNSTABLE)
