"""Mapping-rule evaluation and application.

Rules map extracted fields onto template locations once their conditions
hold for a document profile. Conditions are grouped by ``group_id``; a
group passes when all of its required conditions pass, or, when it has
none, when any optional condition passes. A rule applies only if every
group passes and it has at least one required condition.

Rules run in priority order (highest first, success rate breaking ties);
when two rules target the same location the earlier rule wins.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Callable, Iterable, TypeVar

from hybrid_idp.core.config import DEFAULT_GROUP_ID, DEFAULT_RULE_PRIORITY, INITIAL_SUCCESS_RATE
from hybrid_idp.core.exceptions import PersistenceError, RuleApplicationError, ValidationError
from hybrid_idp.errors.codes import ErrorCode
from hybrid_idp.models.dto import ExtractedField
from hybrid_idp.models.rules import (
    ConditionEvaluation,
    ConditionType,
    DocumentProfile,
    LogicalOperator,
    MappingRule,
    PreviewMapping,
    RuleAction,
    RuleCondition,
    RuleEvaluationResult,
    RuleOperator,
    RuleStatistics,
    RuleTestResult,
    RuleUsageSummary,
    TemplateFieldMapping,
)
from hybrid_idp.ports.rule_store import RuleStore
from hybrid_idp.processors.rule_conditions import (
    apply_transformation,
    compare,
    resolve_actual_value,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

MOST_USED_LIMIT = 5

# Profile attributes turned into conditions when a rule is created from mappings
PROFILE_CONDITIONS = (
    (ConditionType.SUPPLIER, "supplier_name", "Supplier"),
    (ConditionType.DOCUMENT_TYPE, "document_type", "Document type"),
    (ConditionType.TEMPLATE_PATTERN, "template_pattern", "Template pattern"),
)


def _fields_by_name(fields: Iterable[ExtractedField]) -> dict[str, ExtractedField]:
    by_name: dict[str, ExtractedField] = {}
    for field in fields:
        by_name.setdefault(field.field_name.lower(), field)
    return by_name


def order_rules(rules: Iterable[MappingRule]) -> list[MappingRule]:
    """Priority desc, then success rate desc; input order on ties."""
    return sorted(rules, key=lambda r: r.sort_key())


class RuleEngine:
    """Evaluates, tests, applies and administers mapping rules.

    Args:
        store: Mapping-rule repository
    """

    def __init__(self, store: RuleStore):
        self.store = store

    def _store_call(self, operation: str, func: Callable[..., T], *args) -> T:
        try:
            return func(*args)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError("rules", operation) from e

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluate_condition(
        self, rule: MappingRule, condition: RuleCondition, profile: DocumentProfile, group_id: str
    ) -> ConditionEvaluation:
        evaluation = ConditionEvaluation(
            condition_id=condition.id,
            condition_type=condition.condition_type,
            operator=condition.operator,
            group_id=group_id,
            expected_value=condition.value,
            is_required=condition.is_required,
            weight=condition.weight,
        )
        try:
            evaluation.actual_value = resolve_actual_value(profile, condition)
            evaluation.passed, evaluation.confidence = compare(condition, evaluation.actual_value)
        except Exception as e:
            logger.warning(
                "Condition %s failed to evaluate: %s",
                condition.id,
                e,
                extra={
                    "rule_id": rule.id,
                    "error_code": ErrorCode.RULE_EVALUATION_FAILED.value.code,
                },
            )
            evaluation.passed = False
            evaluation.confidence = 0.0
            evaluation.error_message = str(e)
        return evaluation

    def evaluate_rule(self, rule: MappingRule, profile: DocumentProfile) -> RuleEvaluationResult:
        groups: dict[str, list[RuleCondition]] = defaultdict(list)
        for condition in rule.conditions:
            groups[condition.group_id or DEFAULT_GROUP_ID].append(condition)

        result = RuleEvaluationResult(rule_id=rule.id, rule_name=rule.name)
        lines = [f"Rule '{rule.name}' (priority {rule.priority})"]
        for group_id in sorted(groups):
            conditions = sorted(groups[group_id], key=lambda c: c.display_order)
            evaluations = [
                self.evaluate_condition(rule, c, profile, group_id) for c in conditions
            ]
            required = [e for e in evaluations if e.is_required]
            if required:
                group_passed = all(e.passed for e in required)
            else:
                group_passed = any(e.passed for e in evaluations)
            result.group_results[group_id] = group_passed
            result.condition_results.extend(evaluations)

            lines.append(f"Group '{group_id}': {'passed' if group_passed else 'failed'}")
            for condition, e in zip(conditions, evaluations):
                joiner = "" if condition is conditions[0] else f"{condition.logical_operator.value} "
                lines.append(
                    f"  {joiner}{e.condition_type.value} {e.operator.value} '{e.expected_value}'"
                    f" (actual: {e.actual_value!r}, {'required' if e.is_required else 'optional'})"
                    f" -> {'PASS' if e.passed else 'FAIL'}, confidence {e.confidence:.2f}"
                )

        evaluations = result.condition_results
        result.passed_conditions = sum(1 for e in evaluations if e.passed)
        result.failed_conditions = len(evaluations) - result.passed_conditions
        result.required_conditions_total = sum(1 for e in evaluations if e.is_required)
        result.required_conditions_passed = sum(
            1 for e in evaluations if e.is_required and e.passed
        )

        total_weight = sum(e.weight for e in evaluations)
        passed_weight = sum(e.weight for e in evaluations if e.passed)
        result.match_score = passed_weight / total_weight if total_weight > 0 else 0.0
        result.confidence = (
            sum(e.confidence for e in evaluations) / len(evaluations) if evaluations else 0.0
        )
        result.should_apply = (
            result.required_conditions_total > 0
            and all(result.group_results.values())
        )
        if result.required_conditions_total == 0:
            lines.append("No required conditions - rule never applies automatically")
        lines.append(
            f"Result: {'APPLY' if result.should_apply else 'SKIP'} "
            f"(match score {result.match_score:.2f}, confidence {result.confidence:.2f})"
        )
        result.explanation = "\n".join(lines)
        return result

    def get_active_rules(self) -> list[MappingRule]:
        return order_rules(self._store_call("load", self.store.load_active_rules))

    def find_matching_rules(self, profile: DocumentProfile) -> list[MappingRule]:
        matching = []
        for rule in self.get_active_rules():
            evaluation = self.evaluate_rule(rule, profile)
            if evaluation.should_apply:
                matching.append(rule)
        logger.debug("%d rules match profile", len(matching))
        return matching

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def _resolve_action(
        self, rule: MappingRule, action: RuleAction, fields: dict[str, ExtractedField]
    ) -> PreviewMapping | None:
        """Source value of an action, falling back to its default.

        Returns None when neither exists.

        Raises:
            RuleApplicationError: For an unknown transformation
        """
        field = fields.get(action.source_field_name.lower())
        if field is not None:
            value, used_default = field.value, False
        elif action.default_value is not None:
            value, used_default = action.default_value, True
        else:
            return None

        try:
            value = apply_transformation(value, action.transformation)
        except KeyError as e:
            raise RuleApplicationError(
                rule.id, f"unknown transformation '{action.transformation}'"
            ) from e
        return PreviewMapping(
            source_field_name=action.source_field_name,
            target_location=action.target_location,
            target_location_type=action.target_location_type,
            value=value,
            used_default=used_default,
            is_required=action.is_required,
        )

    def _apply_rule(
        self, rule: MappingRule, template_id: str, fields: dict[str, ExtractedField]
    ) -> list[TemplateFieldMapping]:
        mappings = []
        for action in sorted(rule.actions, key=lambda a: a.display_order):
            preview = self._resolve_action(rule, action, fields)
            if preview is None:
                if action.is_required:
                    raise RuleApplicationError(
                        rule.id,
                        f"required field '{action.source_field_name}' not found "
                        "and no default value specified",
                    )
                continue
            mappings.append(
                TemplateFieldMapping(
                    template_id=template_id,
                    rule_id=rule.id,
                    field_name=action.source_field_name,
                    target_location=action.target_location,
                    location_type=action.target_location_type,
                    value=preview.value,
                    format_instructions=action.transformation,
                    description=action.description,
                    is_required=action.is_required,
                    display_order=action.display_order,
                )
            )
        return mappings

    def apply_mapping_rules(
        self,
        profile: DocumentProfile,
        template_id: str,
        fields: Iterable[ExtractedField],
        application_key: str | None = None,
    ) -> list[TemplateFieldMapping]:
        """Apply every matching rule in priority order.

        A rule that fails is skipped with a recorded failure; the others
        still apply. `application_key` makes outcome recording idempotent
        per document.
        """
        by_name = _fields_by_name(fields)
        mappings: list[TemplateFieldMapping] = []
        taken: dict[str, str] = {}

        for rule in self.find_matching_rules(profile):
            try:
                rule_mappings = self._apply_rule(rule, template_id, by_name)
            except RuleApplicationError as e:
                logger.warning(
                    "Rule '%s' not applied: %s",
                    rule.name,
                    e.reason,
                    extra={"rule_id": rule.id, "template_id": template_id, "error_code": e.error_code},
                )
                self.record_rule_failure(rule.id, application_key)
                continue
            except Exception:
                logger.exception(
                    "Rule '%s' raised while applying", rule.name, extra={"rule_id": rule.id}
                )
                self.record_rule_failure(rule.id, application_key)
                continue

            for mapping in rule_mappings:
                winner = taken.get(mapping.target_location)
                if winner is not None:
                    logger.info(
                        "Location %s already mapped by rule %s, skipping",
                        mapping.target_location,
                        winner,
                        extra={"rule_id": rule.id, "template_id": template_id},
                    )
                    continue
                taken[mapping.target_location] = rule.id
                mappings.append(mapping)
            self.record_rule_success(rule.id, application_key)

        logger.info(
            "Applied mapping rules: %d mappings",
            len(mappings),
            extra={"template_id": template_id},
        )
        return mappings

    def test_rule(
        self,
        rule: MappingRule,
        profile: DocumentProfile,
        fields: Iterable[ExtractedField],
    ) -> RuleTestResult:
        """Dry run: evaluate the rule and preview its mappings without persisting."""
        fields = list(fields)
        evaluation = self.evaluate_rule(rule, profile)
        result = RuleTestResult(rule_id=rule.id, evaluation=evaluation)
        if not evaluation.should_apply:
            result.unmapped_fields = [f.field_name for f in fields]
            result.summary = (
                f"Rule '{rule.name}' would not apply to this document "
                f"({evaluation.passed_conditions}/{len(evaluation.condition_results)} "
                "conditions passed)"
            )
            return result

        by_name = _fields_by_name(fields)
        used_sources = set()
        actions = sorted(rule.actions, key=lambda a: a.display_order)
        for action in actions:
            try:
                preview = self._resolve_action(rule, action, by_name)
            except RuleApplicationError as e:
                result.warnings.append(e.reason)
                continue
            if preview is None:
                result.warnings.append(
                    f"Field '{action.source_field_name}' not found and no default value specified"
                )
                continue
            result.preview_mappings.append(preview)
            if not preview.used_default:
                used_sources.add(action.source_field_name.lower())

        result.would_apply = True
        result.mapped_fields = [f.field_name for f in fields if f.field_name.lower() in used_sources]
        result.unmapped_fields = [
            f.field_name for f in fields if f.field_name.lower() not in used_sources
        ]
        result.predicted_success = rule.success_rate
        coverage = len(result.preview_mappings) / len(actions) if actions else 1.0
        result.estimated_confidence = evaluation.confidence * coverage
        result.summary = (
            f"Rule '{rule.name}' would create {len(result.preview_mappings)} of "
            f"{len(actions)} mappings with {len(result.warnings)} warnings; "
            f"{len(result.mapped_fields)} fields mapped, {len(result.unmapped_fields)} unmapped"
        )
        return result

    # ------------------------------------------------------------------
    # Creation and administration
    # ------------------------------------------------------------------

    def create_rule_from_mappings(
        self,
        name: str,
        description: str,
        profile: DocumentProfile,
        mappings: Iterable[TemplateFieldMapping],
    ) -> MappingRule:
        """Persist a rule reproducing an accepted set of mappings.

        Raises:
            ValidationError: If the name is blank
            PersistenceError: If the rule cannot be saved
        """
        if not name or not name.strip():
            raise ValidationError("Rule name must not be empty", field="name")

        conditions = []
        for condition_type, attribute, label in PROFILE_CONDITIONS:
            value = (getattr(profile, attribute) or "").strip()
            if not value:
                continue
            conditions.append(
                RuleCondition(
                    condition_type=condition_type,
                    field_name=attribute,
                    operator=RuleOperator.EQUALS,
                    value=value,
                    case_sensitive=False,
                    is_required=True,
                    weight=1.0,
                    logical_operator=LogicalOperator.AND,
                    display_order=len(conditions),
                    description=f"{label} equals '{value}'",
                )
            )

        actions = [
            RuleAction(
                source_field_name=m.field_name,
                target_location=m.target_location,
                target_location_type=m.location_type,
                is_required=m.is_required,
                display_order=m.display_order,
                description=m.description or f"Map {m.field_name} to {m.target_location}",
            )
            for m in mappings
        ]

        rule = MappingRule(
            name=name.strip(),
            description=description,
            priority=DEFAULT_RULE_PRIORITY,
            success_rate=INITIAL_SUCCESS_RATE,
            conditions=conditions,
            actions=actions,
        )
        saved = self._store_call("save", self.store.save_rule, rule)
        logger.info(
            "Created rule '%s' with %d conditions and %d actions",
            rule.name,
            len(conditions),
            len(actions),
            extra={"rule_id": rule.id},
        )
        return saved

    def _modify(self, rule_id: str, change: Callable[[MappingRule], None]) -> MappingRule | None:
        rule = self._store_call("load", self.store.get_rule, rule_id)
        if rule is None:
            logger.warning("Rule not found", extra={"rule_id": rule_id})
            return None
        change(rule)
        return self._store_call("update", self.store.update_rule, rule)

    def activate_rule(self, rule_id: str) -> bool:
        return self._modify(rule_id, lambda r: setattr(r, "is_active", True)) is not None

    def deactivate_rule(self, rule_id: str) -> bool:
        return self._modify(rule_id, lambda r: setattr(r, "is_active", False)) is not None

    def toggle_rule_activation(self, rule_id: str) -> bool | None:
        """Flip the active flag; returns the new state, or None if the rule is missing."""
        rule = self._modify(rule_id, lambda r: setattr(r, "is_active", not r.is_active))
        return None if rule is None else rule.is_active

    def update_rule_priority(self, rule_id: str, priority: int) -> bool:
        return self._modify(rule_id, lambda r: setattr(r, "priority", priority)) is not None

    def delete_rule(self, rule_id: str) -> bool:
        """Remove a rule, clearing its conditions and actions first."""

        def clear(rule: MappingRule) -> None:
            rule.conditions.clear()
            rule.actions.clear()

        if self._modify(rule_id, clear) is None:
            return False
        deleted = self._store_call("delete", self.store.delete_rule, rule_id)
        if deleted:
            logger.info("Deleted rule", extra={"rule_id": rule_id})
        return deleted

    def record_rule_success(self, rule_id: str, application_key: str | None = None) -> bool:
        return self._store_call("update", self.store.record_outcome, rule_id, True, application_key)

    def record_rule_failure(self, rule_id: str, application_key: str | None = None) -> bool:
        return self._store_call("update", self.store.record_outcome, rule_id, False, application_key)

    def get_statistics(self) -> RuleStatistics:
        rules = self._store_call("load", self.store.load_all_rules)
        active = [r for r in rules if r.is_active]
        most_used = sorted(active, key=lambda r: r.usage_count, reverse=True)[:MOST_USED_LIMIT]
        return RuleStatistics(
            total_rules=len(rules),
            active_rules=len(active),
            total_applications=sum(r.usage_count for r in active),
            total_failures=sum(r.failure_count for r in active),
            average_success_rate=(
                sum(r.success_rate for r in active) / len(active) if active else 0.0
            ),
            most_used=[
                RuleUsageSummary(
                    rule_id=r.id, name=r.name, usage_count=r.usage_count, success_rate=r.success_rate
                )
                for r in most_used
            ],
        )
