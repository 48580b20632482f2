class LeadRoutingError(Exception):
    """Base exception for the lead routing engine."""
    code = "lead_routing_error"
    retryable = False


class PolicyViolation(LeadRoutingError):
    """Raised when a classification result breaks the caller contract."""
    code = "policy_violation"


class InvalidConfidence(PolicyViolation):
    """Raised when a confidence score is outside [0, 1]."""
    code = "invalid_confidence"

    def __init__(self, confidence):
        self.confidence = confidence
        super().__init__(f"Confidence must be within [0, 1], got {confidence!r}")


class InvalidRolloutDraw(PolicyViolation):
    """Raised when a rollout draw is outside [0, 1)."""
    code = "invalid_rollout_draw"

    def __init__(self, draw):
        self.draw = draw
        super().__init__(f"Rollout draw must be within [0, 1), got {draw!r}")


class ClassificationUnknown(PolicyViolation):
    """Raised when a classification value is not one of the fixed set."""
    code = "classification_unknown"

    def __init__(self, value):
        self.value = value
        super().__init__(f"Unknown classification: {value!r}")


class StateViolation(LeadRoutingError):
    """Raised when an action is not allowed from the lead's current state."""
    code = "state_violation"


class InvalidTransition(StateViolation):
    """Raised when an event is not valid from the lead's current status."""
    code = "invalid_transition"

    def __init__(self, status, event_name: str):
        self.status = status
        self.event_name = event_name
        status_value = getattr(status, "value", status)
        super().__init__(f"Cannot apply {event_name} to a lead in status '{status_value}'")


class LeadNotDone(StateViolation):
    """Raised when a reroute is requested for a lead that is not done."""
    code = "lead_not_done"

    def __init__(self, lead_id, status):
        self.lead_id = lead_id
        self.status = status
        status_value = getattr(status, "value", status)
        super().__init__(f"Lead {lead_id} is in status '{status_value}', only done leads can be rerouted")


class AlreadyRerouted(StateViolation):
    """Raised when a second reroute is requested for the same lead."""
    code = "already_rerouted"

    def __init__(self, lead_id):
        self.lead_id = lead_id
        super().__init__(f"Lead {lead_id} has already been rerouted")


class ConcurrencyConflict(LeadRoutingError):
    """Raised when a conditional write finds the lead changed since it was read."""
    code = "concurrency_conflict"
    retryable = True

    def __init__(self, lead_id, expected_version: int):
        self.lead_id = lead_id
        self.expected_version = expected_version
        super().__init__(
            f"Lead {lead_id} was modified concurrently (expected version {expected_version})"
        )


class LeadNotFound(LeadRoutingError):
    """Raised when a lead does not exist."""
    code = "lead_not_found"

    def __init__(self, lead_id):
        self.lead_id = lead_id
        super().__init__(f"Lead with id {lead_id} not found")
