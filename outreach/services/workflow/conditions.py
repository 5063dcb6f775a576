"""
Condition evaluator for workflow branching.

Pure and stateless. Rules are evaluated against a merged view of the lead
(top-level attributes and lead data) overlaid with the previous step's
result. A rule that references a missing field is False; evaluation never
raises.

Rule shapes:
    {"field": "title", "operator": "contains", "value": "cto"}
    {"match": "or", "rules": [rule, rule, {"match": "and", "rules": [...]}]}
    {"and": [...]} / {"or": [...]}
    {"conditionType": "engagement_level", "minEngagementScore": 50}
"""
import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from outreach.core.exceptions import ConditionEvaluationGap
from outreach.core.timezone import parse_datetime, utc_now
from outreach.services.workflow.types import Lead

logger = logging.getLogger(__name__)

OPERATORS = (
    "equals",
    "not_equals",
    "greater_than",
    "less_than",
    "contains",
    "greater_or_equal",
    "less_or_equal",
    "older_than_days",
)

_AND = ("and", "all")
_OR = ("or", "any")
_MISSING = object()


def _get(config: dict, *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in config and config[key] is not None:
            return config[key]
    return default


def preset_rules(config: dict) -> Optional[dict]:
    """
    Translate a preset condition type into an equivalent rule group.

    Returns:
        Rule dict, or None when ``config`` carries no known preset
    """
    condition_type = _get(config, "conditionType", "condition_type")
    if not condition_type:
        return None

    if condition_type == "response_received":
        return {"field": ["response_received", "responseReceived", "replied"],
                "operator": "equals", "value": True}

    if condition_type == "connection_accepted":
        return {"field": ["connection_accepted", "accepted", "connectionAccepted"],
                "operator": "equals", "value": True}

    if condition_type == "profile_matches":
        criteria = _get(config, "profileCriteria", "profile_criteria", default={}) or {}
        rules = []
        if criteria.get("title"):
            rules.append({"field": ["title", "headline"], "operator": "contains",
                          "value": criteria["title"]})
        if criteria.get("seniority"):
            rules.append({"field": ["seniority_level", "seniority"], "operator": "equals",
                          "value": criteria["seniority"]})
        if criteria.get("industry"):
            rules.append({"field": "industry", "operator": "contains",
                          "value": criteria["industry"]})
        # No criteria matches every profile
        return {"match": "and", "rules": rules, "empty": True}

    if condition_type == "engagement_level":
        return {"field": "engagement_score", "operator": "greater_or_equal",
                "value": _get(config, "minEngagementScore", "min_engagement_score", default=0)}

    if condition_type == "time_elapsed":
        return {"field": ["last_activity_at", "created_at"], "operator": "older_than_days",
                "value": _get(config, "daysElapsed", "days_elapsed", default=0)}

    if condition_type == "custom_field":
        name = _get(config, "fieldName", "field_name")
        if not name:
            return {"match": "and", "rules": []}
        return {"field": f"custom_fields.{name}",
                "operator": config.get("operator", "equals"),
                "value": _get(config, "expectedValue", "expected_value")}

    logger.warning(f"[ConditionEvaluator] Unknown condition type: {condition_type}")
    return {"match": "and", "rules": []}


class ConditionEvaluator:
    """Evaluates condition step configs to True/False."""

    def evaluate(self, rules: Any, lead: Lead, prior_result: Optional[dict] = None) -> bool:
        """
        Evaluate ``rules`` for a lead.

        Args:
            rules: condition config (atomic rule, group, preset or list)
            lead: lead being evaluated
            prior_result: output of the previous step, if any

        Returns:
            True or False; never raises
        """
        view = self._build_view(lead, prior_result)
        try:
            return self._eval_node(rules, view)
        except Exception as e:
            logger.warning(f"[ConditionEvaluator] Evaluation error for lead {lead.id}: {e}")
            return False

    def _build_view(self, lead: Lead, prior_result: Optional[dict]) -> Dict[str, Any]:
        lead_view = lead.field_view()
        prior = dict(prior_result or {})
        view = dict(lead_view)
        view.update(prior)
        view["lead"] = lead_view
        view["prior_result"] = prior
        return view

    def _eval_node(self, node: Any, view: dict) -> bool:
        if isinstance(node, list):
            return self._eval_group("and", node, view, empty=False)

        if not isinstance(node, dict):
            logger.warning(f"[ConditionEvaluator] Unsupported rule node: {node!r}")
            return False

        preset = preset_rules(node)
        if preset is not None:
            return self._eval_node(preset, view)

        for key in _AND + _OR:
            if isinstance(node.get(key), list):
                return self._eval_group(key, node[key], view, empty=False)

        children = _get(node, "rules", "conditions")
        if isinstance(children, list):
            combinator = str(_get(node, "match", "combinator", "logic", default="and")).lower()
            return self._eval_group(combinator, children, view, empty=bool(node.get("empty")))

        if "field" in node:
            return self._eval_rule(node, view)

        logger.warning(f"[ConditionEvaluator] Rule has no field or children: {node}")
        return False

    def _eval_group(self, combinator: str, children: List[Any], view: dict, empty: bool) -> bool:
        if not children:
            return empty
        if combinator in _OR:
            return any(self._eval_node(child, view) for child in children)
        if combinator not in _AND:
            logger.warning(f"[ConditionEvaluator] Unknown combinator {combinator!r}, using and")
        return all(self._eval_node(child, view) for child in children)

    def _eval_rule(self, rule: dict, view: dict) -> bool:
        field_spec = rule.get("field")
        operator = str(rule.get("operator") or "equals").lower()
        expected = rule.get("value")

        try:
            actual = self._resolve(field_spec, view)
        except ConditionEvaluationGap as gap:
            logger.debug(f"[ConditionEvaluator] {gap.message}, rule is false")
            return False

        if operator not in OPERATORS:
            logger.warning(f"[ConditionEvaluator] Unknown operator: {operator}")
            return False

        try:
            return compare(operator, actual, expected)
        except (TypeError, ValueError) as e:
            logger.warning(
                f"[ConditionEvaluator] Cannot compare {actual!r} {operator} {expected!r}: {e}"
            )
            return False

    def _resolve(self, field_spec: Any, view: dict) -> Any:
        """First present path wins when ``field_spec`` is a list of alternatives."""
        paths = field_spec if isinstance(field_spec, (list, tuple)) else [field_spec]
        for path in paths:
            value = lookup(view, str(path))
            if value is not _MISSING and value is not None:
                return value
        raise ConditionEvaluationGap(" | ".join(str(p) for p in paths))


def lookup(view: Any, path: str) -> Any:
    """Dotted-path lookup; returns the module sentinel when absent."""
    current = view
    for part in path.split("."):
        if isinstance(current, dict):
            if part not in current:
                return _MISSING
            current = current[part]
        elif isinstance(current, (list, tuple)) and part.isdigit():
            index = int(part)
            if index >= len(current):
                return _MISSING
            current = current[index]
        else:
            return _MISSING
    return current


def _as_number(value: Any) -> float:
    if isinstance(value, bool):
        raise TypeError("booleans are not ordered")
    return float(value)


def _loose_equals(actual: Any, expected: Any) -> bool:
    if actual == expected:
        return True
    if isinstance(actual, bool) or isinstance(expected, bool):
        return str(actual).lower() == str(expected).lower()
    try:
        return _as_number(actual) == _as_number(expected)
    except (TypeError, ValueError):
        return False


def compare(operator: str, actual: Any, expected: Any) -> bool:
    """
    Apply one operator.

    Raises:
        TypeError/ValueError: values are not comparable for the operator
    """
    if operator == "equals":
        return _loose_equals(actual, expected)
    if operator == "not_equals":
        return not _loose_equals(actual, expected)
    if operator == "greater_than":
        return _as_number(actual) > _as_number(expected)
    if operator == "less_than":
        return _as_number(actual) < _as_number(expected)
    if operator == "greater_or_equal":
        return _as_number(actual) >= _as_number(expected)
    if operator == "less_or_equal":
        return _as_number(actual) <= _as_number(expected)
    if operator == "contains":
        if isinstance(actual, (list, tuple, set, frozenset)):
            return any(_loose_equals(item, expected) for item in actual)
        if isinstance(actual, dict):
            return expected in actual
        return str(expected).lower() in str(actual).lower()
    if operator == "older_than_days":
        moment = parse_datetime(actual)
        if moment is None:
            raise ValueError(f"not a datetime: {actual!r}")
        return utc_now() - moment >= timedelta(days=_as_number(expected))
    raise ValueError(f"unknown operator {operator}")


condition_evaluator = ConditionEvaluator()
