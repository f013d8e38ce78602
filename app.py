#!/usr/bin/env python3
import aws_cdk as cdk
from dotenv import load_dotenv

from stacks.service_config import load_deployment_config
from stacks.user_service_stack import UserServiceStack

# Exported environment values win over .env entries.
load_dotenv()

config = load_deployment_config()
ctx = config.context

app = cdk.App()

UserServiceStack(
    app,
    config.stack_name,
    config=config,
    description=f"{ctx.service_name} {ctx.stage} application stack",
    env=cdk.Environment(
        account=ctx.account_id,
        region=ctx.region,
    ),
)

app.synth()
