# exceptions.py


class EVVComplianceError(Exception):
    """Base class for errors raised by the compliance core"""


class StateNotSupported(EVVComplianceError):
    """State code is not configured in the rule catalog or provider registry"""

    def __init__(self, state, reason=None):
        self.state = state
        self.reason = reason or "not configured"
        super().__init__(f"State {state} is not supported: {self.reason}")


class NotFound(EVVComplianceError):
    """Upstream record (visit, client, caregiver) does not exist"""

    def __init__(self, entity, identifier):
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity} {identifier} not found")


class AggregatorTransportError(EVVComplianceError):
    """Aggregator could not be reached, or kept failing after retries"""

    def __init__(self, aggregator, message, status_code=None):
        self.aggregator = aggregator
        self.status_code = status_code
        super().__init__(f"{aggregator}: {message}")
