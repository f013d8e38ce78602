from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from aws_cdk import (
    Duration,
    aws_cloudwatch as cloudwatch,
    aws_cloudwatch_actions as cloudwatch_actions,
    aws_sns as sns,
)
from constructs import Construct

from stacks.errors import ProvisioningError

# Error counts are summed over one minute so a burst alarms on the next datapoint.
ALARM_PERIOD = Duration.minutes(1)
ALARM_STATISTIC = "Sum"

_COMPARISONS = {
    "GTE": cloudwatch.ComparisonOperator.GREATER_THAN_OR_EQUAL_TO_THRESHOLD,
    "GT": cloudwatch.ComparisonOperator.GREATER_THAN_THRESHOLD,
    "LTE": cloudwatch.ComparisonOperator.LESS_THAN_OR_EQUAL_TO_THRESHOLD,
    "LT": cloudwatch.ComparisonOperator.LESS_THAN_THRESHOLD,
}

MetricSource = Callable[..., cloudwatch.IMetric]


@dataclass(frozen=True)
class ThresholdSpec:
    threshold: float
    evaluation_periods: int = 1
    comparison: str = "GTE"

    def __post_init__(self) -> None:
        if self.threshold < 0:
            raise ValueError(f"threshold must be >= 0, got {self.threshold}")
        if int(self.evaluation_periods) != self.evaluation_periods or self.evaluation_periods < 1:
            raise ValueError(
                f"evaluation_periods must be an integer >= 1, got {self.evaluation_periods}"
            )
        if self.comparison not in _COMPARISONS:
            raise ValueError(
                f"comparison must be one of {sorted(_COMPARISONS)}, got {self.comparison!r}"
            )

    @property
    def comparison_operator(self) -> cloudwatch.ComparisonOperator:
        return _COMPARISONS[self.comparison]


# At least one error in a one-minute window.
ANY_ERROR = ThresholdSpec(threshold=1, evaluation_periods=1, comparison="GTE")


@dataclass(frozen=True)
class HealthAlarm:
    alarm: cloudwatch.Alarm
    alarm_name: str
    threshold: ThresholdSpec
    sink: sns.ITopic


def bind_alarm(
    scope: Construct,
    construct_id: str,
    *,
    alarm_name: str,
    description: str,
    metric_source: MetricSource,
    threshold: ThresholdSpec,
    sink: sns.ITopic,
) -> HealthAlarm:
    """Create an alarm on ``metric_source`` that publishes to ``sink``.

    ``metric_source`` is a metric factory such as ``alias.metric_errors`` or
    ``rest_api.metric_server_error``; it is always called with the shared
    one-minute ``Sum`` aggregation.
    """
    try:
        metric = metric_source(statistic=ALARM_STATISTIC, period=ALARM_PERIOD)
        alarm = cloudwatch.Alarm(
            scope,
            construct_id,
            alarm_name=alarm_name,
            alarm_description=description,
            metric=metric,
            threshold=threshold.threshold,
            evaluation_periods=threshold.evaluation_periods,
            actions_enabled=True,
            comparison_operator=threshold.comparison_operator,
        )
        alarm.add_alarm_action(cloudwatch_actions.SnsAction(sink))
    except Exception as e:
        raise ProvisioningError(f"failed to bind alarm {alarm_name}: {e}") from e
    return HealthAlarm(alarm=alarm, alarm_name=alarm_name, threshold=threshold, sink=sink)
