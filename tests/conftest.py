import sys
from pathlib import Path

import pytest
from aws_cdk import App, Environment
from aws_cdk import assertions

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from stacks.service_config import DeploymentConfig, ServiceContext
from stacks.user_endpoints import USER_ENDPOINTS
from stacks.user_service_stack import UserServiceStack

ACCOUNT = "123456789012"
REGION = "us-east-1"
AUTHORIZER_ARN = f"arn:aws:lambda:{REGION}:{ACCOUNT}:function:auth0-authorizer"


@pytest.fixture
def artifacts_root(tmp_path: Path) -> Path:
    root = tmp_path / "artifacts"
    for descriptor in USER_ENDPOINTS:
        artifact_dir = root / descriptor.artifact_locator
        artifact_dir.mkdir(parents=True)
        (artifact_dir / "bootstrap").write_text("#!/bin/sh\n", encoding="utf-8")
    return root


@pytest.fixture
def make_config(artifacts_root: Path):
    def _make(stage: str = "production", **overrides) -> DeploymentConfig:
        values = {
            "context": ServiceContext(
                service_name="cf-user",
                stage=stage,
                account_id=ACCOUNT,
                region=REGION,
            ),
            "authorizer_function_arn": AUTHORIZER_ARN,
            "certificate_arn": f"arn:aws:acm:{REGION}:{ACCOUNT}:certificate/abc",
            "subscription_target": "alarms@example.com",
            "api_domain": "example.com",
            "artifacts_root": artifacts_root,
        }
        values.update(overrides)
        return DeploymentConfig(**values)

    return _make


@pytest.fixture
def synth(make_config):
    """Build the stack for a stage and return ``(stack, template_json)``."""

    def _synth(stage: str = "production", endpoints=USER_ENDPOINTS, **overrides):
        config = make_config(stage, **overrides)
        app = App()
        stack = UserServiceStack(
            app,
            config.stack_name,
            config=config,
            endpoints=endpoints,
            env=Environment(account=ACCOUNT, region=REGION),
        )
        template = assertions.Template.from_stack(
            stack, skip_cyclical_dependencies_check=True
        ).to_json()
        return stack, template

    return _synth

