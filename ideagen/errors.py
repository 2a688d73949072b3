# ideagen/errors.py


class GenerationWorkflowError(Exception):
    pass


class InputError(GenerationWorkflowError):
    """Missing or invalid idea selection. Nothing has been charged."""


class InsufficientCredits(GenerationWorkflowError):
    def __init__(self, required: int, balance: int, feature: str | None = None):
        self.required = required
        self.balance = balance
        self.feature = feature
        super().__init__(
            f"Insufficient credits: {required} required, {balance} available"
        )


class LedgerUnavailable(GenerationWorkflowError):
    pass


class TransientGenerationError(GenerationWorkflowError):
    """Network / timeout / 5xx-class failure. Safe to retry."""


class PermanentGenerationError(GenerationWorkflowError):
    """The remote reported a semantic failure (bad idea data, refused request)."""


class MalformedResponseError(GenerationWorkflowError):
    """The remote call succeeded but the payload failed shape validation."""


class PersistenceError(GenerationWorkflowError):
    pass


class GenerationInProgress(GenerationWorkflowError):
    pass


class UnknownPrincipal(GenerationWorkflowError):
    pass


class UnknownFeatureError(GenerationWorkflowError, KeyError):
    def __init__(self, feature: str):
        self.feature = feature
        super().__init__(f"Unknown feature: {feature}")

    def __str__(self) -> str:
        return f"Unknown feature: {self.feature}"


class PlanRequired(GenerationWorkflowError):
    """The caller's plan does not include the feature. Nothing has been charged."""

    def __init__(self, feature: str, plan: str | None, required_plans: tuple = ()):
        self.feature = feature
        self.plan = plan
        self.required_plans = tuple(required_plans)
        super().__init__(
            f"{feature} requires one of the plans {', '.join(self.required_plans)} (current plan: {plan or 'none'})"
        )
