#!/usr/bin/env python3
"""Main CLI entry point for stack orchestration."""

import logging

import click

from .cloudformation import main as stack_commands


@click.group()
@click.version_option(package_name="cfn-stack-orchestrator")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose: bool) -> None:
    """Create, update and delete CloudFormation stacks from CI jobs.

    Stack outputs are printed as STACK_KEY=VALUE lines so a job runner can
    merge them into its environment.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # botocore is very chatty at DEBUG
    logging.getLogger("botocore").setLevel(logging.WARNING)


cli.add_command(stack_commands, name="stack")


if __name__ == "__main__":
    cli()
