from __future__ import annotations

from dataclasses import dataclass

from aws_cdk import (
    Duration,
    aws_apigateway as apigw,
    aws_iam as iam,
    aws_lambda as _lambda,
    aws_logs as logs,
    aws_sns as sns,
)
from constructs import Construct

from stacks.alarms import ANY_ERROR, HealthAlarm, bind_alarm
from stacks.errors import ProvisioningError
from stacks.naming import ROLE_API, ROLE_API_ERRORS, ResourceNamer
from stacks.service_config import DeploymentConfig
from stacks.stage_policy import is_continuously_delivered, log_retention

API_STAGE_NAME = "LIVE"
AUTHORIZER_CACHE_TTL = Duration.seconds(300)
CORS_PREFLIGHT_MAX_AGE = Duration.seconds(60)

# Gateway-level rejections skip per-route CORS, so the canned 401/403 carry their own headers.
GATEWAY_RESPONSE_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "'*'",
    "Access-Control-Allow-Headers": "'*'",
    "Access-Control-Allow-Methods": "'*'",
    "Access-Control-Max-Age": "'86400'",
}

ACCESS_DENIED_TEMPLATE = (
    '{ "ErrorMessage": "$context.authorizer.errorMessage", '
    '"ErrorCode": "$context.error.responseType", "Errors": [] }'
)
UNAUTHORIZED_TEMPLATE = (
    '{ "ErrorMessage": "Unauthorized", '
    '"ErrorCode": "$context.error.responseType", "Errors": [] }'
)


def access_log_format() -> apigw.AccessLogFormat:
    """One JSON object per request; numeric fields are left unquoted."""
    f = apigw.AccessLogField
    fields = [
        ("requestTime", f.context_request_time(), True),
        ("requestId", f.context_request_id(), True),
        ("httpMethod", f.context_http_method(), True),
        ("path", f.context_path(), True),
        ("resourcePath", f.context_resource_path(), True),
        ("status", f.context_status(), False),
        ("responseLatency", f.context_response_latency(), False),
        ("xrayTraceId", f.context_xray_trace_id(), True),
        ("integrationLatency", f.context_integration_latency(), True),
        ("integrationStatus", f.context_integration_status(), True),
        ("authorizerIntegrationLatency", f.context_authorizer_integration_latency(), True),
        ("sourceIp", f.context_identity_source_ip(), True),
        ("userAgent", f.context_identity_user_agent(), True),
        ("principalId", f.context_authorizer_principal_id(), True),
    ]
    parts = [
        f'"{key}":"{value}"' if quoted else f'"{key}":{value}'
        for key, value, quoted in fields
    ]
    return apigw.AccessLogFormat.custom("{" + ",".join(parts) + "}")


@dataclass(frozen=True)
class Route:
    path: str
    method: str
    alias: _lambda.IFunction


class RouteTable:
    def __init__(self) -> None:
        self._routes: list[Route] = []

    def add(self, path: str, method: str, alias: _lambda.IFunction) -> Route:
        method = method.upper()
        for existing in self._routes:
            if existing.path == path and existing.method == method:
                raise ProvisioningError(f"duplicate route {method} {path}")
        route = Route(path=path, method=method, alias=alias)
        self._routes.append(route)
        return route

    def __iter__(self):
        return iter(self._routes)

    def __len__(self) -> int:
        return len(self._routes)

    def entries(self) -> list[tuple[str, str]]:
        return [(r.path, r.method) for r in self._routes]


class AccessGate(Construct):
    """The REST API front door: authorizer, CORS, access logs, canned errors, 5xx alarm.

    Routes are collected with ``register_route`` and only attached to the API
    by ``finalize``, which also adds the custom-domain base-path mapping on
    continuously delivered stages.
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        config: DeploymentConfig,
        sink: sns.ITopic,
    ) -> None:
        super().__init__(scope, construct_id)
        self._config = config
        ctx = config.context
        namer = ResourceNamer(ctx)
        self.api_name = namer.derive(ROLE_API)
        self.routes = RouteTable()
        self.base_path_mapping: apigw.CfnBasePathMapping | None = None
        self._finalized = False

        authorizer_fn = _lambda.Function.from_function_arn(
            self,
            "LambdaAuthorizer",
            config.authorizer_function_arn,
        )
        self.authorizer = apigw.RequestAuthorizer(
            self,
            "RequestAuthorizer",
            handler=authorizer_fn,
            authorizer_name=f"{self.api_name}-authorizer",
            identity_sources=[apigw.IdentitySource.header("Authorization")],
            results_cache_ttl=AUTHORIZER_CACHE_TTL,
        )

        api_resource_policy = iam.PolicyDocument(
            statements=[
                iam.PolicyStatement(
                    effect=iam.Effect.ALLOW,
                    actions=["execute-api:Invoke"],
                    principals=[iam.AnyPrincipal()],
                    resources=["execute-api:/*"],
                ),
            ]
        )

        self.access_log_group = logs.LogGroup(
            self,
            "AccessLogsLogGroup",
            log_group_name=f"/aws/api-gateway/{self.api_name}",
            retention=log_retention(ctx.stage),
            removal_policy=config.stateful_removal_policy,
        )

        self.rest_api = apigw.RestApi(
            self,
            "RestApi",
            rest_api_name=self.api_name,
            endpoint_configuration=apigw.EndpointConfiguration(
                types=[apigw.EndpointType.REGIONAL]
            ),
            deploy_options=apigw.StageOptions(
                stage_name=API_STAGE_NAME,
                tracing_enabled=True,
                access_log_destination=apigw.LogGroupLogDestination(self.access_log_group),
                access_log_format=access_log_format(),
            ),
            default_method_options=apigw.MethodOptions(authorizer=self.authorizer),
            policy=api_resource_policy,
            # Authorization, not origin, is the trust boundary.
            default_cors_preflight_options=apigw.CorsOptions(
                allow_origins=apigw.Cors.ALL_ORIGINS,
                allow_methods=apigw.Cors.ALL_METHODS,
                allow_headers=apigw.Cors.DEFAULT_HEADERS,
                max_age=CORS_PREFLIGHT_MAX_AGE,
            ),
            # Account-level CloudWatch role is managed outside this stack.
            cloud_watch_role=False,
        )

        self.rest_api.add_gateway_response(
            "AccessDeniedGatewayResponse",
            type=apigw.ResponseType.ACCESS_DENIED,
            status_code="403",
            response_headers=GATEWAY_RESPONSE_CORS_HEADERS,
            templates={"application/json": ACCESS_DENIED_TEMPLATE},
        )
        self.rest_api.add_gateway_response(
            "UnauthorizedGatewayResponse",
            type=apigw.ResponseType.UNAUTHORIZED,
            status_code="401",
            response_headers=GATEWAY_RESPONSE_CORS_HEADERS,
            templates={"application/json": UNAUTHORIZED_TEMPLATE},
        )

        self.server_error_alarm: HealthAlarm = bind_alarm(
            self,
            "ApiErrors",
            alarm_name=namer.derive(ROLE_API_ERRORS),
            description="500 errors > 0",
            metric_source=self.rest_api.metric_server_error,
            threshold=ANY_ERROR,
            sink=sink,
        )

    @property
    def custom_hostname(self) -> str | None:
        stage = self._config.context.stage
        if not is_continuously_delivered(stage):
            return None
        return f"{stage}-api.{self._config.api_domain}"

    def register_route(self, path: str, method: str, alias: _lambda.IFunction) -> Route:
        if self._finalized:
            raise ProvisioningError(
                f"cannot register {method} {path}: gate already finalized",
                stage=self._config.context.stage,
            )
        return self.routes.add(path, method, alias)

    def finalize(self) -> None:
        if self._finalized:
            raise ProvisioningError(
                "gate already finalized", stage=self._config.context.stage
            )
        self._finalized = True

        for route in self.routes:
            resource = self.rest_api.root.resource_for_path(route.path)
            resource.add_method(route.method, apigw.LambdaIntegration(route.alias))

        # Binds to the deployed stage snapshot, so it goes on after every route.
        hostname = self.custom_hostname
        if hostname is not None:
            self.base_path_mapping = apigw.CfnBasePathMapping(
                self,
                "BasePathMapping",
                domain_name=hostname,
                rest_api_id=self.rest_api.rest_api_id,
                base_path=self._config.api_base_path,
                stage=self.rest_api.deployment_stage.stage_name,
            )
