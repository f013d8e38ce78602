from __future__ import annotations

from typing import Any

from stacks.errors import RolloutAbortedError
from stacks.naming import ROLE_DEPLOY, ROLE_ENDPOINT_ERRORS, ResourceNamer
from stacks.service_config import ServiceContext

from .cli_shared import OpError

# CodeDeploy stops a deployment with this code when one of its alarms fires.
ALARM_ACTIVE = "ALARM_ACTIVE"
# Creator of the redeployment CodeDeploy starts when it rolls a deployment back.
AUTO_ROLLBACK = "autoRollback"

_BATCH_LIMIT = 25


def _list_deployment_ids(cd: Any, *, application_name: str, group_name: str) -> list[str]:
    ids: list[str] = []
    kwargs: dict[str, Any] = {
        "applicationName": application_name,
        "deploymentGroupName": group_name,
    }
    while True:
        resp = cd.list_deployments(**kwargs)
        ids.extend(resp.get("deployments") or [])
        token = resp.get("nextToken")
        if not token:
            return ids
        kwargs["nextToken"] = token


def _get_deployments(cd: Any, ids: list[str]) -> list[dict[str, Any]]:
    infos: list[dict[str, Any]] = []
    for i in range(0, len(ids), _BATCH_LIMIT):
        batch = ids[i : i + _BATCH_LIMIT]
        infos.extend(cd.batch_get_deployments(deploymentIds=batch).get("deploymentsInfo") or [])
    return infos


def _create_time(info: dict[str, Any]) -> str:
    return str(info.get("createTime") or "")


def latest_deployment(session: Any, ctx: ServiceContext, logical_name: str) -> dict[str, Any] | None:
    """Newest deployment of the endpoint's group.

    When the newest one is CodeDeploy's automatic rollback, the deployment
    that triggered it is returned instead, so an alarm abort stays visible.
    """
    namer = ResourceNamer(ctx)
    application_name = namer.derive(ROLE_DEPLOY)
    group_name = namer.derive(ROLE_DEPLOY, logical_name)
    cd = session.client("codedeploy")
    try:
        ids = _list_deployment_ids(cd, application_name=application_name, group_name=group_name)
        if not ids:
            return None
        infos = _get_deployments(cd, ids)
        if not infos:
            return None
        latest = max(infos, key=_create_time)
        if latest.get("creator") != AUTO_ROLLBACK:
            return latest
        trigger_id = (latest.get("rollbackInfo") or {}).get("rollbackTriggeringDeploymentId")
        if not trigger_id:
            return latest
        for info in infos:
            if info.get("deploymentId") == trigger_id:
                return info
        triggering = _get_deployments(cd, [trigger_id])
    except Exception as e:
        raise OpError(
            f"codedeploy lookup failed for {application_name}/{group_name}: {e}"
        ) from e
    return triggering[0] if triggering else latest


def summarize(info: dict[str, Any]) -> dict[str, Any]:
    error = info.get("errorInformation") or {}
    rollback = info.get("rollbackInfo") or {}
    return {
        "deploymentId": str(info.get("deploymentId") or ""),
        "status": str(info.get("status") or ""),
        "createTime": str(info.get("createTime") or ""),
        "errorCode": str(error.get("code") or ""),
        "errorMessage": str(error.get("message") or ""),
        "rollbackDeploymentId": str(rollback.get("rollbackDeploymentId") or ""),
    }


def is_aborted_by_alarm(info: dict[str, Any]) -> bool:
    error = info.get("errorInformation") or {}
    return str(info.get("status") or "") in {"Stopped", "Failed"} and error.get("code") == ALARM_ACTIVE


def check_rollout(ctx: ServiceContext, logical_name: str, info: dict[str, Any]) -> dict[str, Any]:
    """Return the deployment summary, or raise if the soak alarm rolled it back."""
    summary = summarize(info)
    if is_aborted_by_alarm(info):
        raise RolloutAbortedError(
            logical_name=logical_name,
            deployment_id=summary["deploymentId"],
            alarms=[ResourceNamer(ctx).derive(ROLE_ENDPOINT_ERRORS, logical_name)],
        )
    return summary
