"""Stage classification shared by every part of the topology.

Named stages are deployed continuously from the main branch; any other stage
name (``pr-123``, ``feature-x``) is an ephemeral review environment.
"""
from __future__ import annotations

from aws_cdk import aws_logs as logs

DEVELOPMENT = "development"
STAGING = "staging"
PRODUCTION = "production"

CONTINUOUSLY_DELIVERED_STAGES = frozenset({DEVELOPMENT, STAGING, PRODUCTION})


def is_continuously_delivered(stage: str) -> bool:
    return stage in CONTINUOUSLY_DELIVERED_STAGES


def is_production(stage: str) -> bool:
    return stage == PRODUCTION


def log_retention(stage: str) -> logs.RetentionDays:
    if is_production(stage):
        return logs.RetentionDays.ONE_YEAR
    return logs.RetentionDays.ONE_WEEK
