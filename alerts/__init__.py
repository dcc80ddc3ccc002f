"""Alert rules, evaluation and lifecycle."""
from alerts.errors import (
    AlertError, EvaluationError, InvalidStateError, AlertNotFoundError,
    RuleNotFoundError, RuleValidationError,
)
from alerts.rules_manager import RuleRepository
from alerts.engine import AlertEvaluator, compare
