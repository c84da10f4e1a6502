"""Validation errors raised before any record is processed."""


class AttributionError(ValueError):
    """Base class for fatal run-configuration errors."""


class InvalidWindow(AttributionError):
    def __init__(self, start, end):
        self.start = start
        self.end = end
        super().__init__(f"Invalid window: start {start} is after end {end}")


class MissingField(AttributionError):
    def __init__(self, field: str, dataset: str = "decisions"):
        self.field = field
        self.dataset = dataset
        super().__init__(f"Field '{field}' not found in {dataset}")


class UnknownPolicy(AttributionError):
    def __init__(self, policy):
        self.policy = policy
        super().__init__(
            f"Unknown attribution policy {policy!r}; expected 'full_stack' or 'web'"
        )
