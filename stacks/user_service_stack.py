from __future__ import annotations

import json
import sys
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable

from aws_cdk import (
    CfnOutput,
    Stack,
    aws_apigateway as apigw,
    aws_backup as backup,
    aws_codedeploy as codedeploy,
    aws_sns as sns,
    aws_sns_subscriptions as subscriptions,
)
from constructs import Construct

from stacks.access_gate import AccessGate, RouteTable
from stacks.alarms import HealthAlarm
from stacks.endpoints import LogicalEndpoint, RolloutAlias, provision_endpoint, select_rollout_strategy
from stacks.errors import InvalidNameError, ProvisioningError
from stacks.naming import ROLE_ALARM_TOPIC, ROLE_DEPLOY, ResourceNamer
from stacks.service_config import (
    SUBSCRIPTION_URL,
    DeploymentConfig,
    ServiceContext,
    subscription_kind,
)
from stacks.stage_policy import is_production
from stacks.state_store import StatePathSpec, StateStore, provision_state_store
from stacks.user_endpoints import USER_ENDPOINTS


@dataclass
class Topology:
    context: ServiceContext
    sink: sns.Topic
    subscription: sns.ITopicSubscription | None
    store: StateStore
    path_spec: StatePathSpec
    gate: AccessGate
    aliases: dict[str, RolloutAlias] = field(default_factory=dict)

    @property
    def route_table(self) -> RouteTable:
        return self.gate.routes

    @property
    def gate_alarm(self) -> HealthAlarm:
        return self.gate.server_error_alarm

    @property
    def backup_plan(self) -> backup.BackupPlan | None:
        return self.store.backup_plan

    @property
    def base_path_mapping(self) -> apigw.CfnBasePathMapping | None:
        return self.gate.base_path_mapping

    @property
    def alarms(self) -> list[HealthAlarm]:
        return [a.alarm for a in self.aliases.values()]

    def identifiers(self) -> dict[str, Any]:
        """Every derived resource name, stable for identical inputs."""
        namer = ResourceNamer(self.context)
        out: dict[str, Any] = {
            "alarmTopic": namer.derive(ROLE_ALARM_TOPIC),
            "api": self.gate.api_name,
            "apiErrorsAlarm": self.gate_alarm.alarm_name,
            "table": self.store.table_name,
            "deployApplication": namer.derive(ROLE_DEPLOY),
            "endpoints": {},
        }
        if self.store.backup_name is not None:
            out["backup"] = self.store.backup_name
        if self.gate.custom_hostname is not None:
            out["customHostname"] = self.gate.custom_hostname
        for name, alias in self.aliases.items():
            out["endpoints"][name] = {
                "function": alias.function_name,
                "alarm": alias.alarm.alarm_name,
                "deploymentGroup": namer.derive(ROLE_DEPLOY, name),
                "route": f"{alias.descriptor.http_method} {alias.descriptor.route_path}",
                "rollout": alias.strategy.name,
                "grants": sorted(alias.grants),
            }
        return out


def _subscription_for(target: str) -> sns.ITopicSubscription:
    if subscription_kind(target) == SUBSCRIPTION_URL:
        return subscriptions.UrlSubscription(target)
    return subscriptions.EmailSubscription(target)


def _emit(event: dict[str, Any]) -> None:
    print(json.dumps(event, separators=(",", ":"), sort_keys=True), file=sys.stderr)


class UserServiceStack(Stack):
    """Topology root: alarm topic, users table, API gateway and one aliased Lambda per endpoint.

    Assembly either completes or raises out of the constructor, in which case
    the app must not be synthesized.
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        config: DeploymentConfig,
        endpoints: Iterable[LogicalEndpoint] = USER_ENDPOINTS,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)
        start = time.time()
        ctx = config.context
        wide_event: dict[str, Any] = {
            "event": "user_service_topology_assembly",
            "ts": datetime.now(timezone.utc).isoformat(),
            "service": ctx.service_name,
            "stage": ctx.stage,
            "stack": construct_id,
        }
        try:
            self.topology = self._assemble(config, list(endpoints))
            wide_event["outcome"] = "success"
            wide_event["endpoints"] = len(self.topology.aliases)
            wide_event["rollout"] = select_rollout_strategy(ctx.stage).name
            wide_event["backup"] = self.topology.backup_plan is not None
            wide_event["base_path_mapping"] = self.topology.base_path_mapping is not None
            wide_event["subscription"] = self.topology.subscription is not None
        except Exception as e:
            wide_event["outcome"] = "error"
            wide_event["error_type"] = type(e).__name__
            wide_event["error"] = str(e)
            raise
        finally:
            wide_event["duration_ms"] = int((time.time() - start) * 1000)
            _emit(wide_event)

    def _assemble(self, config: DeploymentConfig, endpoints: list[LogicalEndpoint]) -> Topology:
        ctx = config.context
        namer = ResourceNamer(ctx)

        if not endpoints:
            raise ProvisioningError("topology needs at least one endpoint", stage=ctx.stage)
        seen: set[str] = set()
        for descriptor in endpoints:
            if descriptor.logical_name in seen:
                raise InvalidNameError(
                    f"duplicate logical endpoint name {descriptor.logical_name!r}"
                )
            seen.add(descriptor.logical_name)

        sink = sns.Topic(
            self,
            "SnsTopic",
            topic_name=namer.derive(ROLE_ALARM_TOPIC),
        )

        subscription: sns.ITopicSubscription | None = None
        if is_production(ctx.stage):
            subscription = _subscription_for(config.subscription_target)
            sink.add_subscription(subscription)

        store, path_spec = provision_state_store(self, config)

        gate = AccessGate(self, "AccessGate", config=config, sink=sink)

        topology = Topology(
            context=ctx,
            sink=sink,
            subscription=subscription,
            store=store,
            path_spec=path_spec,
            gate=gate,
        )

        application = codedeploy.LambdaApplication(
            self,
            "DeployApplication",
            application_name=namer.derive(ROLE_DEPLOY),
        )

        for descriptor in endpoints:
            rollout_alias = provision_endpoint(
                self,
                config,
                descriptor,
                sink=sink,
                table=store.table,
                application=application,
            )
            gate.register_route(descriptor.route_path, descriptor.http_method, rollout_alias.alias)
            topology.aliases[descriptor.logical_name] = rollout_alias

        gate.finalize()

        CfnOutput(
            self,
            "ApiUrl",
            value=gate.rest_api.url,
            description="Invoke URL of the API stage.",
        )
        CfnOutput(
            self,
            "UsersTableName",
            value=store.table.table_name,
        )
        CfnOutput(
            self,
            "AlarmTopicArn",
            value=sink.topic_arn,
        )
        if gate.custom_hostname is not None:
            CfnOutput(
                self,
                "CustomApiUrl",
                value=f"https://{gate.custom_hostname}/{config.api_base_path}",
                description="Base URL through the stage custom domain.",
            )
            if config.certificate_arn:
                CfnOutput(
                    self,
                    "CustomDomainCertificateArn",
                    value=config.certificate_arn,
                )

        return topology
