from __future__ import annotations

import sys

import aws_cdk as cdk
import click
import typer
from dotenv import load_dotenv

from stacks.errors import InvalidNameError, ProvisioningError, RolloutAbortedError
from stacks.naming import ROLE_APP, ResourceNamer
from stacks.service_config import ServiceContext, load_deployment_config, load_service_context
from stacks.user_service_stack import UserServiceStack

from . import __version__
from .cli_shared import (
    OpError,
    UsageError,
    _account_session,
    _print_json,
    _require_stack_output,
    _rich_error,
)
from .rollout import check_rollout, latest_deployment

app = typer.Typer(
    name="user-ops",
    help="Plan and inspect the user service topology.",
    no_args_is_help=True,
    add_completion=False,
)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"user-ops {__version__}")
        raise typer.Exit(code=0)


@app.callback()
def app_callback(
    ctx: typer.Context,
    pretty: bool = typer.Option(False, "--pretty", help="Indent JSON output"),
    version: bool = typer.Option(False, "--version", callback=_version_callback, is_eager=True),
) -> None:
    del version
    ctx.obj = {"pretty": bool(pretty)}


def _pretty(ctx: typer.Context) -> bool:
    obj = ctx.obj if isinstance(ctx.obj, dict) else {}
    return bool(obj.get("pretty"))


def _service_context() -> ServiceContext:
    try:
        return load_service_context()
    except ValueError as e:
        raise UsageError(str(e)) from e


@app.command("plan", help="Assemble the topology locally and print every derived resource name.")
def plan(ctx: typer.Context) -> None:
    try:
        config = load_deployment_config()
    except ValueError as e:
        raise UsageError(str(e)) from e
    try:
        stack = UserServiceStack(cdk.App(), config.stack_name, config=config)
    except (InvalidNameError, ProvisioningError) as e:
        raise OpError(f"topology assembly failed: {e}") from e
    _print_json(
        {
            "kind": "user-ops.plan.v1",
            "stack": config.stack_name,
            "identifiers": stack.topology.identifiers(),
        },
        pretty=_pretty(ctx),
    )


@app.command("rollout-status", help="Show the latest deployment of one endpoint alias.")
def rollout_status(
    ctx: typer.Context,
    logical_name: str = typer.Argument(..., help="Logical endpoint name, e.g. GetUser"),
) -> None:
    service_ctx = _service_context()
    session = _account_session()
    info = latest_deployment(session, service_ctx, logical_name)
    if info is None:
        _print_json(
            {
                "kind": "user-ops.rollout-status.v1",
                "endpoint": logical_name,
                "deployment": None,
            },
            pretty=_pretty(ctx),
        )
        return
    summary = check_rollout(service_ctx, logical_name, info)
    _print_json(
        {
            "kind": "user-ops.rollout-status.v1",
            "endpoint": logical_name,
            "deployment": summary,
        },
        pretty=_pretty(ctx),
    )


@app.command("stack-output", help="Print one CloudFormation output of the service stack.")
def stack_output(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="Output key, e.g. ApiUrl"),
) -> None:
    stack = ResourceNamer(_service_context()).derive(ROLE_APP)
    value = _require_stack_output(_account_session(), stack=stack, key=key)
    _print_json(
        {
            "kind": "user-ops.stack-output.v1",
            "stack": stack,
            "key": key,
            "value": value,
        },
        pretty=_pretty(ctx),
    )


def main(argv: list[str] | None = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    try:
        # Exported environment values win over .env entries.
        load_dotenv()
        result = app(args=argv, prog_name="user-ops", standalone_mode=False)
        if result is None:
            return 0
        return int(result)
    except typer.Exit as e:
        return int(e.exit_code)
    except click.ClickException as e:
        _rich_error(e.format_message())
        return int(e.exit_code)
    except UsageError as e:
        _rich_error(str(e))
        return 2
    except RolloutAbortedError as e:
        _rich_error(str(e))
        return 3
    except (OpError, InvalidNameError) as e:
        _rich_error(str(e))
        return 1


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
