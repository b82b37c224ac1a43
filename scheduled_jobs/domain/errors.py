class JobError(Exception):
    """Base exception for scheduled job manager errors."""
    pass

class ConfigurationError(JobError):
    pass

class TypeMismatchError(JobError):
    def __init__(self, expected: type, got: type):
        self.expected = expected
        self.got = got
        super().__init__(
            f"job type does not match this manager's job model, expected {expected.__name__} got {got.__name__}"
        )

class InvalidJobStateError(JobError):
    def __init__(self, current_status, target_status):
        super().__init__(f"Cannot transition from {current_status} to {target_status}")

class StoreError(JobError):
    pass
