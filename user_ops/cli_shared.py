from __future__ import annotations

import json
import os
import sys
from typing import Any

import boto3
from rich.console import Console


class UserOpsError(Exception):
    pass


class UsageError(UserOpsError):
    pass


class OpError(UserOpsError):
    pass


_ERROR_CONSOLE = Console(stderr=True)


def _rich_error(msg: str) -> None:
    _ERROR_CONSOLE.print(f"[bold red]error:[/bold red] {msg}")


def _env_or_none(*names: str) -> str | None:
    for n in names:
        v = (os.environ.get(n) or "").strip()
        if v:
            return v
    return None


def _account_session() -> Any:
    region = _env_or_none("AWS_REGION", "CDK_DEFAULT_REGION")
    if not region:
        raise UsageError("missing AWS_REGION (set env or CDK_DEFAULT_REGION)")
    profile = _env_or_none("AWS_PROFILE")
    return boto3.session.Session(profile_name=profile, region_name=region)


def _cf_outputs(session: Any, *, stack: str) -> list[dict[str, Any]]:
    cf = session.client("cloudformation")
    try:
        resp = cf.describe_stacks(StackName=stack)
    except Exception as e:
        raise OpError(f"cloudformation describe-stacks failed for stack {stack!r}: {e}") from e
    stacks = resp.get("Stacks") or []
    if not stacks:
        raise OpError(f"stack not found: {stack}")
    outputs = stacks[0].get("Outputs") or []
    if not isinstance(outputs, list):
        return []
    return [o for o in outputs if isinstance(o, dict)]


def _require_stack_output(session: Any, *, stack: str, key: str) -> str:
    for o in _cf_outputs(session, stack=stack):
        if str(o.get("OutputKey", "")).strip() == key:
            return str(o.get("OutputValue", "")).strip()
    raise OpError(f"missing CloudFormation output {key!r} on stack {stack!r}")


def _print_json(obj: Any, *, pretty: bool = False) -> None:
    if pretty:
        sys.stdout.write(json.dumps(obj, indent=2, sort_keys=True) + "\n")
    else:
        sys.stdout.write(json.dumps(obj, separators=(",", ":"), sort_keys=True) + "\n")
