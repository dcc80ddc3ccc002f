"""Alert engine exceptions."""


class AlertError(Exception):
    """Base class for alert engine errors."""


class EvaluationError(AlertError):
    """Rules for a sample could not be loaded."""


class InvalidStateError(AlertError):
    """Requested lifecycle transition is not allowed from the current status."""

    def __init__(self, alert_id, current, target):
        self.alert_id = alert_id
        self.current = current
        self.target = target
        super().__init__(f"Alert {alert_id} cannot move from {current} to {target}")


class AlertNotFoundError(AlertError):
    def __init__(self, alert_id):
        self.alert_id = alert_id
        super().__init__(f"Alert not found: {alert_id}")


class RuleNotFoundError(AlertError):
    def __init__(self, rule_id):
        self.rule_id = rule_id
        super().__init__(f"Rule not found: {rule_id}")


class RuleValidationError(AlertError, ValueError):
    """Rule definition is malformed or conflicts with an existing rule."""
