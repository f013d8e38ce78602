from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from aws_cdk import RemovalPolicy

from stacks.errors import InvalidNameError
from stacks.naming import ROLE_APP, ResourceNamer, validate_name_part
from stacks.stage_policy import is_continuously_delivered, is_production

DEFAULT_REGION = "us-east-1"
DEFAULT_API_BASE_PATH = "user"
DEFAULT_ARTIFACTS_ROOT = "artifacts"

SUBSCRIPTION_EMAIL = "email"
SUBSCRIPTION_URL = "url"


def subscription_kind(target: str) -> str:
    if target.startswith("https://") or target.startswith("http://"):
        return SUBSCRIPTION_URL
    if "@" in target:
        return SUBSCRIPTION_EMAIL
    raise ValueError(
        f"ALARM_SUBSCRIPTION must be an email address or an http(s) URL, got {target!r}"
    )


@dataclass(frozen=True)
class ServiceContext:
    service_name: str
    stage: str
    account_id: str | None = None
    region: str | None = None

    def __post_init__(self) -> None:
        if not self.service_name:
            raise InvalidNameError("service name must not be empty")
        if not self.stage:
            raise InvalidNameError("stage must not be empty")
        validate_name_part(self.service_name, label="service name")
        validate_name_part(self.stage, label="stage")

    @property
    def name_prefix(self) -> str:
        return f"{self.service_name}-{self.stage}"


@dataclass(frozen=True)
class DeploymentConfig:
    context: ServiceContext
    authorizer_function_arn: str
    certificate_arn: str = ""
    subscription_target: str = ""
    api_domain: str = ""
    api_base_path: str = DEFAULT_API_BASE_PATH
    artifacts_root: Path = field(default_factory=lambda: Path(DEFAULT_ARTIFACTS_ROOT))
    data_retention_mode: str = "destroy"

    def __post_init__(self) -> None:
        if not self.authorizer_function_arn:
            raise ValueError("AUTHORIZER_FUNCTION_ARN must be set")
        if self.data_retention_mode not in {"destroy", "retain"}:
            raise ValueError(
                "DATA_RETENTION_MODE must be 'destroy' or 'retain' (case-insensitive)"
            )
        if is_continuously_delivered(self.context.stage) and not self.api_domain:
            raise ValueError(
                f"API_DOMAIN must be set for stage {self.context.stage!r} "
                "(needed for the custom base-path mapping)"
            )
        if is_production(self.context.stage):
            if not self.subscription_target:
                raise ValueError("ALARM_SUBSCRIPTION must be set for the production stage")
            subscription_kind(self.subscription_target)

    @property
    def stack_name(self) -> str:
        return ResourceNamer(self.context).derive(ROLE_APP)

    @property
    def stateful_removal_policy(self) -> RemovalPolicy:
        # Dev-first default: delete stateful resources on teardown.
        if self.data_retention_mode == "destroy":
            return RemovalPolicy.DESTROY
        return RemovalPolicy.RETAIN


def _env(environ: Mapping[str, str], name: str, default: str = "") -> str:
    return (environ.get(name) or default).strip()


def load_service_context(environ: Mapping[str, str] | None = None) -> ServiceContext:
    env = os.environ if environ is None else environ

    service = _env(env, "SERVICE")
    stage = _env(env, "STAGE")
    if not service or not stage:
        raise ValueError("SERVICE and STAGE must be set")

    return ServiceContext(
        service_name=service,
        stage=stage,
        account_id=_env(env, "CDK_DEFAULT_ACCOUNT") or None,
        region=_env(env, "CDK_DEFAULT_REGION", DEFAULT_REGION),
    )


def load_deployment_config(environ: Mapping[str, str] | None = None) -> DeploymentConfig:
    env = os.environ if environ is None else environ
    return DeploymentConfig(
        context=load_service_context(env),
        authorizer_function_arn=_env(env, "AUTHORIZER_FUNCTION_ARN"),
        certificate_arn=_env(env, "CERTIFICATE_ARN"),
        subscription_target=_env(env, "ALARM_SUBSCRIPTION"),
        api_domain=_env(env, "API_DOMAIN"),
        api_base_path=_env(env, "API_BASE_PATH", DEFAULT_API_BASE_PATH),
        artifacts_root=Path(_env(env, "ARTIFACTS_ROOT", DEFAULT_ARTIFACTS_ROOT)),
        data_retention_mode=_env(env, "DATA_RETENTION_MODE", "destroy").lower(),
    )
