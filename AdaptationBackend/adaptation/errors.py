class AdaptationError(Exception):
    """Base error of the decision engine."""


class PersistenceError(AdaptationError):
    """The persistence collaborator failed (connection, serialization...)."""


class StaleWriteError(PersistenceError):
    """A versioned write lost the race against a concurrent writer."""

    def __init__(self, key: str, expected_version: int, actual_version: int | None):
        super().__init__(
            f"stale write on {key}: expected version {expected_version}, "
            f"found {actual_version}"
        )
        self.key = key
        self.expected_version = expected_version
        self.actual_version = actual_version


class UnknownRuleSetVersionError(AdaptationError):
    def __init__(self, version_id: str):
        super().__init__(f"unknown rule set version: {version_id}")
        self.version_id = version_id
