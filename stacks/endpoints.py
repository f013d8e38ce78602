from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from aws_cdk import (
    Duration,
    aws_codedeploy as codedeploy,
    aws_dynamodb as ddb,
    aws_lambda as _lambda,
    aws_logs as logs,
    aws_sns as sns,
)
from constructs import Construct

from stacks.alarms import ANY_ERROR, HealthAlarm, bind_alarm
from stacks.errors import ProvisioningError
from stacks.naming import ROLE_DEPLOY, ROLE_ENDPOINT_ERRORS, ROLE_FUNCTION, ResourceNamer
from stacks.service_config import DeploymentConfig
from stacks.stage_policy import is_production, log_retention

ALIAS_NAME = "LIVE"

GRANT_READ = "read"
GRANT_WRITE = "write"


@dataclass(frozen=True)
class LogicalEndpoint:
    logical_name: str
    artifact_locator: str
    http_method: str
    route_path: str
    requires_store_read: bool = False
    requires_store_write: bool = False


@dataclass(frozen=True)
class RolloutStrategy:
    name: str
    deployment_config: codedeploy.ILambdaDeploymentConfig
    rollback_on_alarm: bool = True


# 10% of traffic for a 10 minute soak, then the rest; rolled back if the alarm fires.
GRADUAL = RolloutStrategy(
    name="canary-10-percent-10-minutes",
    deployment_config=codedeploy.LambdaDeploymentConfig.CANARY_10_PERCENT_10_MINUTES,
)
IMMEDIATE = RolloutStrategy(
    name="all-at-once",
    deployment_config=codedeploy.LambdaDeploymentConfig.ALL_AT_ONCE,
)


def select_rollout_strategy(stage: str) -> RolloutStrategy:
    return GRADUAL if is_production(stage) else IMMEDIATE


@dataclass(frozen=True)
class RolloutAlias:
    descriptor: LogicalEndpoint
    function_name: str
    alias: _lambda.Alias
    alarm: HealthAlarm
    strategy: RolloutStrategy
    deployment_group: codedeploy.LambdaDeploymentGroup
    grants: frozenset[str]

    @property
    def logical_name(self) -> str:
        return self.descriptor.logical_name


class ComputeArtifact(Protocol):
    """Versioned, invocable unit behind an alias.

    Grants always go through the alias so no permission references a raw version.
    """

    def register_version(self) -> None: ...

    @property
    def current_version(self) -> _lambda.IVersion: ...

    def create_alias(self, alias_name: str) -> _lambda.Alias: ...

    def grant_read(self, table: ddb.ITable) -> None: ...

    def grant_write(self, table: ddb.ITable) -> None: ...


class LambdaArtifact:
    def __init__(
        self,
        scope: Construct,
        *,
        function_name: str,
        asset_path: Path,
        config: DeploymentConfig,
    ) -> None:
        self._scope = scope
        self._function_name = function_name
        self._asset_path = asset_path
        self._config = config
        self._function: _lambda.Function | None = None
        self._alias: _lambda.Alias | None = None

    @property
    def function(self) -> _lambda.Function:
        if self._function is None:
            raise ProvisioningError(f"artifact {self._function_name} is not registered")
        return self._function

    def register_version(self) -> None:
        if not self._asset_path.exists():
            raise ProvisioningError(
                f"compute artifact not found at {self._asset_path}"
            )
        ctx = self._config.context
        self._function = _lambda.Function(
            self._scope,
            "Function",
            function_name=self._function_name,
            code=_lambda.Code.from_asset(str(self._asset_path)),
            handler="main",
            runtime=_lambda.Runtime.PROVIDED_AL2023,
            architecture=_lambda.Architecture.ARM_64,
            timeout=Duration.seconds(30),
            memory_size=1024,
            environment={
                "SERVICE": ctx.service_name,
                "STAGE": ctx.stage,
            },
            tracing=_lambda.Tracing.ACTIVE,
        )
        logs.LogGroup(
            self._scope,
            "LogGroup",
            log_group_name=f"/aws/lambda/{self._function_name}",
            retention=log_retention(ctx.stage),
            removal_policy=self._config.stateful_removal_policy,
        )

    @property
    def current_version(self) -> _lambda.IVersion:
        return self.function.current_version

    def create_alias(self, alias_name: str) -> _lambda.Alias:
        if self._alias is not None:
            raise ProvisioningError(f"artifact {self._function_name} already has an alias")
        self._alias = _lambda.Alias(
            self._scope,
            "Alias",
            alias_name=alias_name,
            version=self.current_version,
        )
        return self._alias

    def _grantee(self) -> _lambda.Alias:
        if self._alias is None:
            raise ProvisioningError(f"artifact {self._function_name} has no alias to grant to")
        return self._alias

    def grant_read(self, table: ddb.ITable) -> None:
        table.grant_read_data(self._grantee())

    def grant_write(self, table: ddb.ITable) -> None:
        table.grant_write_data(self._grantee())


def resolve_artifact_path(config: DeploymentConfig, descriptor: LogicalEndpoint) -> Path:
    return Path(config.artifacts_root) / descriptor.artifact_locator


def provision_endpoint(
    scope: Construct,
    config: DeploymentConfig,
    descriptor: LogicalEndpoint,
    *,
    sink: sns.ITopic,
    table: ddb.ITable,
    application: codedeploy.ILambdaApplication,
) -> RolloutAlias:
    """Build function, alias, error alarm, deployment group and store grants.

    Everything for one endpoint lives under a construct named after the
    logical name; on failure that construct is removed so no alias or alarm is
    left half wired.
    """
    ctx = config.context
    namer = ResourceNamer(ctx)
    name = descriptor.logical_name
    function_name = namer.derive(ROLE_FUNCTION, name)
    alarm_name = namer.derive(ROLE_ENDPOINT_ERRORS, name)
    deployment_group_name = namer.derive(ROLE_DEPLOY, name)

    try:
        endpoint_scope = Construct(scope, name)
    except Exception as e:
        raise ProvisioningError(
            f"cannot create endpoint scope: {e}", logical_name=name, stage=ctx.stage
        ) from e

    try:
        artifact = LambdaArtifact(
            endpoint_scope,
            function_name=function_name,
            asset_path=resolve_artifact_path(config, descriptor),
            config=config,
        )
        artifact.register_version()
        alias = artifact.create_alias(ALIAS_NAME)

        alarm = bind_alarm(
            endpoint_scope,
            "Errors",
            alarm_name=alarm_name,
            description="The latest deployment errors > 0",
            metric_source=alias.metric_errors,
            threshold=ANY_ERROR,
            sink=sink,
        )

        strategy = select_rollout_strategy(ctx.stage)
        deployment_group = codedeploy.LambdaDeploymentGroup(
            endpoint_scope,
            "DeploymentGroup",
            application=application,
            deployment_group_name=deployment_group_name,
            alias=alias,
            deployment_config=strategy.deployment_config,
            alarms=[alarm.alarm],
            auto_rollback=codedeploy.AutoRollbackConfig(
                deployment_in_alarm=strategy.rollback_on_alarm,
                failed_deployment=True,
            ),
        )

        grants: set[str] = set()
        if descriptor.requires_store_read:
            artifact.grant_read(table)
            grants.add(GRANT_READ)
        if descriptor.requires_store_write:
            artifact.grant_write(table)
            grants.add(GRANT_WRITE)
    except Exception as e:
        scope.node.try_remove_child(name)
        if isinstance(e, ProvisioningError):
            raise ProvisioningError(str(e), logical_name=name, stage=ctx.stage) from e
        raise ProvisioningError(
            f"failed to provision endpoint: {e}", logical_name=name, stage=ctx.stage
        ) from e

    return RolloutAlias(
        descriptor=descriptor,
        function_name=function_name,
        alias=alias,
        alarm=alarm,
        strategy=strategy,
        deployment_group=deployment_group,
        grants=frozenset(grants),
    )
