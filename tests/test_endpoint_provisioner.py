import shutil

import pytest
from aws_cdk import App, Stack
from aws_cdk import assertions
from aws_cdk import aws_codedeploy as codedeploy
from aws_cdk import aws_sns as sns

from stacks.endpoints import (
    GRADUAL,
    IMMEDIATE,
    LogicalEndpoint,
    provision_endpoint,
    select_rollout_strategy,
)
from stacks.errors import InvalidNameError, ProvisioningError
from stacks.state_store import provision_state_store

READ_ONLY = LogicalEndpoint(
    logical_name="GetUser",
    artifact_locator="cf-user_get-user",
    http_method="GET",
    route_path="/v1/users/{userId}",
    requires_store_read=True,
)


def _scaffold(config):
    stack = Stack(App(), "EndpointTestStack")
    sink = sns.Topic(stack, "Sink")
    store, _ = provision_state_store(stack, config)
    application = codedeploy.LambdaApplication(stack, "DeployApplication")
    return stack, sink, store, application


def _provision(config, descriptor=READ_ONLY):
    stack, sink, store, application = _scaffold(config)
    rollout_alias = provision_endpoint(
        stack,
        config,
        descriptor,
        sink=sink,
        table=store.table,
        application=application,
    )
    template = assertions.Template.from_stack(
        stack, skip_cyclical_dependencies_check=True
    ).to_json()
    return stack, rollout_alias, template


def _resources(template: dict, resource_type: str) -> list[dict]:
    return [r for r in template["Resources"].values() if r.get("Type") == resource_type]


def _statement_actions(stmt: dict) -> list[str]:
    actions = stmt.get("Action", [])
    if isinstance(actions, str):
        return [actions]
    return actions


def test_rollout_strategy_is_gradual_only_in_production():
    assert select_rollout_strategy("production") is GRADUAL
    assert select_rollout_strategy("staging") is IMMEDIATE
    assert select_rollout_strategy("pr-123") is IMMEDIATE


def test_function_alias_alarm_and_deployment_group(make_config):
    _, rollout_alias, template = _provision(make_config("production"))

    assert rollout_alias.function_name == "cf-user-production-fn-GetUser"
    assert rollout_alias.strategy is GRADUAL
    assert rollout_alias.alarm.alarm_name == "cf-user-production-errors-GetUser"

    (fn,) = _resources(template, "AWS::Lambda::Function")
    props = fn["Properties"]
    assert props["FunctionName"] == "cf-user-production-fn-GetUser"
    assert props["Runtime"] == "provided.al2023"
    assert props["Architectures"] == ["arm64"]
    assert props["Timeout"] == 30
    assert props["MemorySize"] == 1024
    assert props["TracingConfig"] == {"Mode": "Active"}
    assert props["Environment"]["Variables"] == {"SERVICE": "cf-user", "STAGE": "production"}

    (alias,) = _resources(template, "AWS::Lambda::Alias")
    assert alias["Properties"]["Name"] == "LIVE"

    (alarm,) = _resources(template, "AWS::CloudWatch::Alarm")
    alarm_props = alarm["Properties"]
    assert alarm_props["AlarmName"] == "cf-user-production-errors-GetUser"
    assert alarm_props["MetricName"] == "Errors"
    assert alarm_props["Namespace"] == "AWS/Lambda"
    assert alarm_props["Threshold"] == 1
    assert alarm_props["Period"] == 60
    assert alarm_props["ComparisonOperator"] == "GreaterThanOrEqualToThreshold"

    (group,) = _resources(template, "AWS::CodeDeploy::DeploymentGroup")
    group_props = group["Properties"]
    assert group_props["DeploymentGroupName"] == "cf-user-production-deploy-GetUser"
    assert group_props["DeploymentConfigName"] == "CodeDeployDefault.LambdaCanary10Percent10Minutes"
    assert group_props["AlarmConfiguration"]["Enabled"] is True
    assert "DEPLOYMENT_STOP_ON_ALARM" in group_props["AutoRollbackConfiguration"]["Events"]

    (log_group,) = _resources(template, "AWS::Logs::LogGroup")
    assert log_group["Properties"]["LogGroupName"] == "/aws/lambda/cf-user-production-fn-GetUser"
    assert log_group["Properties"]["RetentionInDays"] == 365


def test_ephemeral_stage_cuts_over_at_once(make_config):
    _, rollout_alias, template = _provision(make_config("pr-123"))
    assert rollout_alias.strategy is IMMEDIATE
    (group,) = _resources(template, "AWS::CodeDeploy::DeploymentGroup")
    assert group["Properties"]["DeploymentConfigName"] == "CodeDeployDefault.LambdaAllAtOnce"
    (log_group,) = _resources(template, "AWS::Logs::LogGroup")
    assert log_group["Properties"]["RetentionInDays"] == 7


def test_read_only_descriptor_gets_exactly_read_grant(make_config):
    _, rollout_alias, template = _provision(make_config("pr-123"))
    assert rollout_alias.grants == frozenset({"read"})

    actions: set[str] = set()
    for policy in _resources(template, "AWS::IAM::Policy"):
        for stmt in policy["Properties"]["PolicyDocument"]["Statement"]:
            actions.update(_statement_actions(stmt))
    assert "dynamodb:GetItem" in actions
    assert "dynamodb:Query" in actions
    assert "dynamodb:PutItem" not in actions
    assert "dynamodb:DeleteItem" not in actions


def test_write_only_descriptor_gets_exactly_write_grant(make_config):
    descriptor = LogicalEndpoint(
        logical_name="ImportUsers",
        artifact_locator="cf-user_create-user",
        http_method="POST",
        route_path="/v1/imports",
        requires_store_write=True,
    )
    _, rollout_alias, template = _provision(make_config("pr-123"), descriptor)
    assert rollout_alias.grants == frozenset({"write"})

    actions: set[str] = set()
    for policy in _resources(template, "AWS::IAM::Policy"):
        for stmt in policy["Properties"]["PolicyDocument"]["Statement"]:
            actions.update(_statement_actions(stmt))
    assert "dynamodb:PutItem" in actions
    assert "dynamodb:Query" not in actions


def test_missing_artifact_aborts_without_partial_wiring(make_config, artifacts_root):
    shutil.rmtree(artifacts_root / READ_ONLY.artifact_locator)
    config = make_config("pr-123")
    stack, sink, store, application = _scaffold(config)

    with pytest.raises(ProvisioningError) as excinfo:
        provision_endpoint(
            stack,
            config,
            READ_ONLY,
            sink=sink,
            table=store.table,
            application=application,
        )
    assert excinfo.value.logical_name == "GetUser"
    assert excinfo.value.stage == "pr-123"
    assert "artifact not found" in str(excinfo.value)
    assert stack.node.try_find_child("GetUser") is None

    template = assertions.Template.from_stack(stack).to_json()
    assert not _resources(template, "AWS::Lambda::Alias")
    assert not _resources(template, "AWS::CloudWatch::Alarm")


def test_malformed_logical_name_fails_before_any_construct(make_config):
    config = make_config("pr-123")
    stack, sink, store, application = _scaffold(config)
    descriptor = LogicalEndpoint(
        logical_name="Get User",
        artifact_locator="cf-user_get-user",
        http_method="GET",
        route_path="/v1/users/{userId}",
    )
    with pytest.raises(InvalidNameError):
        provision_endpoint(
            stack,
            config,
            descriptor,
            sink=sink,
            table=store.table,
            application=application,
        )
    assert stack.node.try_find_child("Get User") is None
