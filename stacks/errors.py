from __future__ import annotations


class TopologyError(Exception):
    pass


class InvalidNameError(TopologyError, ValueError):
    pass


class ProvisioningError(TopologyError):
    def __init__(
        self,
        message: str,
        *,
        logical_name: str | None = None,
        stage: str | None = None,
    ) -> None:
        self.logical_name = logical_name
        self.stage = stage
        context = []
        if logical_name:
            context.append(f"endpoint={logical_name}")
        if stage:
            context.append(f"stage={stage}")
        if context:
            message = f"{message} ({', '.join(context)})"
        super().__init__(message)


class RolloutAbortedError(TopologyError):
    """The soak-window alarm fired and the alias was rolled back."""

    def __init__(
        self,
        *,
        logical_name: str,
        deployment_id: str,
        alarms: list[str] | None = None,
    ) -> None:
        self.logical_name = logical_name
        self.deployment_id = deployment_id
        self.alarms = list(alarms or [])
        message = f"rollout of {logical_name} aborted (deployment {deployment_id})"
        if self.alarms:
            message += f"; alarms: {', '.join(self.alarms)}"
        super().__init__(message)
