from __future__ import annotations

from dataclasses import dataclass

from aws_cdk import (
    Duration,
    aws_backup as backup,
    aws_dynamodb as ddb,
    aws_events as events,
)
from constructs import Construct

from stacks.naming import ROLE_BACKUP, ROLE_TABLE, ResourceNamer
from stacks.service_config import DeploymentConfig
from stacks.stage_policy import is_continuously_delivered

USERS_TABLE = "users"


@dataclass(frozen=True)
class SecondaryIndexSpec:
    index_name: str
    partition_key_attr: str
    sort_key_attr: str


@dataclass(frozen=True)
class StatePathSpec:
    primary_key_attr: str
    sort_key_attr: str
    secondary_index: SecondaryIndexSpec | None = None


USERS_PATH_SPEC = StatePathSpec(
    primary_key_attr="PK",
    sort_key_attr="SK",
    secondary_index=SecondaryIndexSpec(
        index_name="GSI1",
        partition_key_attr="GSI1PK",
        sort_key_attr="GSI1SK",
    ),
)


class StateStore(Construct):
    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        config: DeploymentConfig,
        path_spec: StatePathSpec = USERS_PATH_SPEC,
    ) -> None:
        super().__init__(scope, construct_id)
        namer = ResourceNamer(config.context)
        self.path_spec = path_spec

        self.table_name = namer.derive(ROLE_TABLE, USERS_TABLE)
        self.backup_name: str | None = None

        self.table = ddb.Table(
            self,
            "UsersTable",
            table_name=self.table_name,
            billing_mode=ddb.BillingMode.PAY_PER_REQUEST,
            encryption=ddb.TableEncryption.AWS_MANAGED,
            point_in_time_recovery_specification=ddb.PointInTimeRecoverySpecification(
                point_in_time_recovery_enabled=True
            ),
            partition_key=ddb.Attribute(
                name=path_spec.primary_key_attr, type=ddb.AttributeType.STRING
            ),
            sort_key=ddb.Attribute(
                name=path_spec.sort_key_attr, type=ddb.AttributeType.STRING
            ),
            removal_policy=config.stateful_removal_policy,
        )

        gsi = path_spec.secondary_index
        if gsi is not None:
            self.table.add_global_secondary_index(
                index_name=gsi.index_name,
                partition_key=ddb.Attribute(
                    name=gsi.partition_key_attr, type=ddb.AttributeType.STRING
                ),
                sort_key=ddb.Attribute(
                    name=gsi.sort_key_attr, type=ddb.AttributeType.STRING
                ),
            )

        self.backup_plan: backup.BackupPlan | None = None
        if is_continuously_delivered(config.context.stage):
            self.backup_plan = self._add_weekly_backup(namer, config)

    def _add_weekly_backup(
        self, namer: ResourceNamer, config: DeploymentConfig
    ) -> backup.BackupPlan:
        backup_name = namer.derive(ROLE_BACKUP)
        self.backup_name = backup_name
        vault = backup.BackupVault(
            self,
            "BackupVault",
            backup_vault_name=backup_name,
            removal_policy=config.stateful_removal_policy,
        )
        plan = backup.BackupPlan(
            self,
            "BackupPlan",
            backup_plan_name=backup_name,
            backup_vault=vault,
        )
        plan.add_selection(
            "BackupPlanSelection",
            resources=[backup.BackupResource.from_dynamo_db_table(self.table)],
        )
        plan.add_rule(
            backup.BackupPlanRule(
                start_window=Duration.hours(1),
                completion_window=Duration.hours(3),
                # Once a week at the end of the week.
                schedule_expression=events.Schedule.cron(
                    minute="0",
                    hour="0",
                    week_day="7",
                    month="*",
                    year="*",
                ),
                move_to_cold_storage_after=Duration.days(30),
                delete_after=Duration.days(365),
            )
        )
        return plan


def provision_state_store(
    scope: Construct, config: DeploymentConfig
) -> tuple[StateStore, StatePathSpec]:
    store = StateStore(scope, "StateStore", config=config)
    return store, store.path_spec
