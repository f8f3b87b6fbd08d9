"""Exceptions raised by the rules engine."""


class RulesEngineError(Exception):
    """Base class for engine errors."""


class ValidationError(RulesEngineError):
    """A rule, action, or A/B test definition is malformed."""


class RuleNotFoundError(RulesEngineError):
    def __init__(self, rule_id):
        super().__init__(f"Rule not found: {rule_id}")
        self.rule_id = rule_id


class RuleInUseError(RulesEngineError):
    """Rule is referenced by a draft or running A/B test and cannot be deleted."""
    def __init__(self, rule_id, test_ids):
        super().__init__(f"Rule {rule_id} is referenced by active A/B test(s): {', '.join(test_ids)}")
        self.rule_id = rule_id
        self.test_ids = list(test_ids)


class ABTestNotFoundError(RulesEngineError):
    def __init__(self, test_id):
        super().__init__(f"A/B test not found: {test_id}")
        self.test_id = test_id


class InvalidTransitionError(RulesEngineError):
    def __init__(self, kind, current, target):
        super().__init__(f"Cannot move {kind} from {current} to {target}")
        self.current = current
        self.target = target


class RoutingError(RulesEngineError):
    """An A/B test is not eligible for traffic routing."""


class AuditWriteError(RulesEngineError):
    """The mutation was applied but its audit entry could not be persisted."""
    def __init__(self, message, entries=None):
        super().__init__(message)
        self.entries = list(entries or [])
