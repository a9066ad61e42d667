"""Unit tests for mapping-rule evaluation, application and administration."""

import re

import pytest

from hybrid_idp.core.exceptions import PersistenceError, ValidationError
from hybrid_idp.models.dto import ExtractedField
from hybrid_idp.models.rules import (
    ConditionType,
    DocumentProfile,
    MappingRule,
    RuleAction,
    RuleCondition,
    RuleOperator,
    TemplateFieldMapping,
)
from hybrid_idp.processors.rule_conditions import (
    apply_transformation,
    compare,
    levenshtein_similarity,
)
from hybrid_idp.processors.rule_engine import RuleEngine, order_rules
from hybrid_idp.storage import InMemoryRuleStore


class BrokenRuleStore:
    def load_active_rules(self):
        raise OSError("disk gone")


def condition(
    condition_type=ConditionType.SUPPLIER,
    value="TNB",
    operator=RuleOperator.EQUALS,
    **kwargs,
) -> RuleCondition:
    return RuleCondition(condition_type=condition_type, operator=operator, value=value, **kwargs)


def rule(name="TNB bill", conditions=None, actions=None, **kwargs) -> MappingRule:
    return MappingRule(
        name=name,
        conditions=[condition()] if conditions is None else conditions,
        actions=actions or [],
        **kwargs,
    )


def action(source: str, target: str, **kwargs) -> RuleAction:
    return RuleAction(source_field_name=source, target_location=target, **kwargs)


def field(name: str, value: str) -> ExtractedField:
    return ExtractedField(field_name=name, value=value, confidence=0.9)


@pytest.fixture
def profile() -> DocumentProfile:
    return DocumentProfile(
        supplier_name="TNB",
        document_type="Utility Bill",
        template_pattern="TNB-2024",
        template_category="electricity",
        available_fields=["Account Number", "Total Amount"],
        field_values={"Account Number": "220012345678", "Total Amount": "245.60"},
    )


@pytest.fixture
def fields() -> list[ExtractedField]:
    return [field("Account Number", "220012345678"), field("Total Amount", "245.60")]


class TestLevenshtein:
    def test_identical(self):
        assert levenshtein_similarity("invoice", "invoice") == 1.0

    def test_disjoint_equal_length(self):
        assert levenshtein_similarity("abc", "xyz") == 0.0

    def test_empty(self):
        assert levenshtein_similarity("", "") == 1.0
        assert levenshtein_similarity("abc", "") == 0.0

    def test_partial(self):
        assert levenshtein_similarity("kitten", "sitting") == pytest.approx(1 - 3 / 7)


class TestComparators:
    @pytest.mark.parametrize(
        "operator,expected,actual,passed",
        [
            (RuleOperator.EQUALS, "tnb", "TNB", True),
            (RuleOperator.NOT_EQUALS, "TNB", "Maxis", True),
            (RuleOperator.NOT_EQUALS, "TNB", "tnb", False),
            (RuleOperator.CONTAINS, "bill", "Utility Bill", True),
            (RuleOperator.STARTS_WITH, "util", "Utility Bill", True),
            (RuleOperator.ENDS_WITH, "bill", "Utility Bill", True),
            (RuleOperator.ENDS_WITH, "bills", "Utility Bill", False),
            (RuleOperator.IS_EMPTY, "", "   ", True),
            (RuleOperator.IS_NOT_EMPTY, "", "x", True),
            (RuleOperator.MATCHES, r"^TNB-\d{4}$", "tnb-2024", True),
            (RuleOperator.MATCHES, r"^X", "TNB", False),
        ],
    )
    def test_operators(self, operator, expected, actual, passed):
        result, confidence = compare(condition(value=expected, operator=operator), actual)
        assert result is passed
        assert 0.0 <= confidence <= 1.0
        if passed:
            assert confidence == 1.0

    def test_case_sensitive_equals(self):
        c = condition(value="tnb", case_sensitive=True)
        assert compare(c, "TNB")[0] is False
        assert compare(c, "tnb")[0] is True

    def test_case_sensitive_regex(self):
        c = condition(value=r"^TNB-\d{4}$", operator=RuleOperator.MATCHES, case_sensitive=True)
        assert compare(c, "tnb-2024") == (False, 0.1)
        assert compare(c, "TNB-2024") == (True, 1.0)

    def test_equals_miss_gives_partial_credit(self):
        passed, confidence = compare(condition(value="TNB Berhad"), "TNB Berhd")
        assert passed is False
        assert confidence == pytest.approx(levenshtein_similarity("tnb berhd", "tnb berhad"))

    def test_contains_miss_credit_is_halved(self):
        passed, confidence = compare(
            condition(value="abc", operator=RuleOperator.CONTAINS), "abd"
        )
        assert passed is False
        assert confidence == pytest.approx(levenshtein_similarity("abd", "abc") * 0.5)

    def test_missing_value_only_satisfies_is_empty(self):
        assert compare(condition(operator=RuleOperator.IS_EMPTY), None) == (True, 1.0)
        assert compare(condition(operator=RuleOperator.EQUALS), None) == (False, 0.0)

    def test_invalid_regex_raises(self):
        with pytest.raises(re.error):
            compare(condition(value="([bad", operator=RuleOperator.MATCHES), "anything")


class TestTransformations:
    @pytest.mark.parametrize(
        "transformation,expected",
        [
            (None, " Total Due "),
            ("upper", " TOTAL DUE "),
            ("lower", " total due "),
            ("trim", "Total Due"),
            ("remove_spaces", "TotalDue"),
            ("prefix:RM", "RM Total Due "),
            ("suffix:!", " Total Due !"),
        ],
    )
    def test_apply(self, transformation, expected):
        assert apply_transformation(" Total Due ", transformation) == expected

    def test_unknown(self):
        with pytest.raises(KeyError):
            apply_transformation("x", "reverse")


class TestEvaluateRule:
    def test_single_required_exact_condition(self, rule_store, profile):
        result = RuleEngine(rule_store).evaluate_rule(rule(), profile)
        assert result.should_apply is True
        assert result.match_score == 1.0
        assert result.confidence == 1.0
        assert result.required_conditions_total == 1
        assert result.required_conditions_passed == 1
        assert "PASS" in result.explanation

    def test_no_required_conditions_never_applies(self, rule_store, profile):
        r = rule(conditions=[condition(is_required=False)])
        result = RuleEngine(rule_store).evaluate_rule(r, profile)
        assert result.should_apply is False
        assert result.match_score == 1.0
        assert "No required conditions - rule never applies automatically" in result.explanation

    def test_rule_without_conditions(self, rule_store, profile):
        result = RuleEngine(rule_store).evaluate_rule(rule(conditions=[]), profile)
        assert result.should_apply is False
        assert result.match_score == 0.0

    def test_weighted_match_score(self, rule_store, profile):
        r = rule(
            conditions=[
                condition(weight=3.0),
                condition(ConditionType.DOCUMENT_TYPE, "Invoice", weight=1.0, is_required=False),
            ]
        )
        result = RuleEngine(rule_store).evaluate_rule(r, profile)
        assert result.should_apply is True
        assert result.match_score == pytest.approx(0.75)
        assert result.passed_conditions == 1
        assert result.failed_conditions == 1

    def test_groups_must_all_pass(self, rule_store, profile):
        r = rule(
            conditions=[
                condition(group_id="a"),
                condition(ConditionType.DOCUMENT_TYPE, "Invoice", group_id="b", is_required=False),
                condition(ConditionType.TEMPLATE_CATEGORY, "gas", group_id="b", is_required=False),
            ]
        )
        result = RuleEngine(rule_store).evaluate_rule(r, profile)
        assert result.group_results == {"a": True, "b": False}
        assert result.should_apply is False

    def test_optional_group_passes_on_any(self, rule_store, profile):
        r = rule(
            conditions=[
                condition(group_id="a"),
                condition(ConditionType.DOCUMENT_TYPE, "Invoice", group_id="b", is_required=False),
                condition(
                    ConditionType.TEMPLATE_CATEGORY, "electricity", group_id="b", is_required=False
                ),
            ]
        )
        result = RuleEngine(rule_store).evaluate_rule(r, profile)
        assert result.group_results == {"a": True, "b": True}
        assert result.should_apply is True

    def test_field_conditions(self, rule_store, profile):
        r = rule(
            conditions=[
                condition(ConditionType.FIELD_EXISTS, "true", field_name="total amount"),
                condition(
                    ConditionType.FIELD_VALUE,
                    r"^\d+\.\d{2}$",
                    operator=RuleOperator.MATCHES,
                    field_name="Total Amount",
                ),
            ]
        )
        assert RuleEngine(rule_store).evaluate_rule(r, profile).should_apply is True

    def test_invalid_regex_fails_condition_only(self, rule_store, profile):
        r = rule(
            conditions=[
                condition(),
                condition(
                    ConditionType.TEMPLATE_PATTERN,
                    "([bad",
                    operator=RuleOperator.MATCHES,
                    is_required=False,
                ),
            ]
        )
        result = RuleEngine(rule_store).evaluate_rule(r, profile)
        assert result.should_apply is True
        failed = [c for c in result.condition_results if not c.passed]
        assert len(failed) == 1
        assert failed[0].error_message


class TestOrdering:
    def test_priority_then_success_rate(self):
        low = rule("low", priority=50)
        high_weak = rule("high-weak", priority=100, success_rate=0.6)
        high_strong = rule("high-strong", priority=100, success_rate=0.9)
        ordered = order_rules([low, high_weak, high_strong])
        assert [r.name for r in ordered] == ["high-strong", "high-weak", "low"]

    def test_find_matching_rules_ordered(self, rule_store, profile):
        rule_store.save_rule(rule("fifty", priority=50))
        rule_store.save_rule(rule("hundred", priority=100))
        rule_store.save_rule(rule("other supplier", conditions=[condition(value="Maxis")]))
        rule_store.save_rule(rule("inactive", priority=500, is_active=False))

        matching = RuleEngine(rule_store).find_matching_rules(profile)
        assert [r.name for r in matching] == ["hundred", "fifty"]

    def test_store_failure(self, profile):
        with pytest.raises(PersistenceError):
            RuleEngine(BrokenRuleStore()).find_matching_rules(profile)


class TestApplyMappingRules:
    def test_applies_actions(self, rule_store, profile, fields):
        r = rule(
            actions=[
                action("Account Number", "B2"),
                action("Total Amount", "C2", transformation="prefix:RM "),
                action("Currency", "D2", default_value="MYR"),
            ]
        )
        rule_store.save_rule(r)

        mappings = RuleEngine(rule_store).apply_mapping_rules(profile, "tpl-1", fields, "doc-1")

        assert [(m.target_location, m.value) for m in mappings] == [
            ("B2", "220012345678"),
            ("C2", "RM 245.60"),
            ("D2", "MYR"),
        ]
        assert all(m.rule_id == r.id and m.template_id == "tpl-1" for m in mappings)
        assert mappings[0].location_type == "ExcelCell"

        stored = rule_store.get_rule(r.id)
        assert stored.usage_count == 1
        assert stored.failure_count == 0

    def test_higher_priority_wins_location(self, rule_store, profile, fields):
        winner = rule("winner", priority=100, actions=[action("Account Number", "B2")])
        loser = rule(
            "loser",
            priority=50,
            actions=[action("Total Amount", "B2"), action("Total Amount", "C2")],
        )
        rule_store.save_rule(loser)
        rule_store.save_rule(winner)

        mappings = RuleEngine(rule_store).apply_mapping_rules(profile, "tpl", fields)
        assert [(m.target_location, m.rule_id) for m in mappings] == [
            ("B2", winner.id),
            ("C2", loser.id),
        ]

    def test_failed_rule_is_recorded_and_others_continue(self, rule_store, profile, fields):
        broken = rule(
            "broken", priority=200, actions=[action("Due Date", "E2", is_required=True)]
        )
        working = rule("working", priority=100, actions=[action("Total Amount", "C2")])
        rule_store.save_rule(broken)
        rule_store.save_rule(working)

        mappings = RuleEngine(rule_store).apply_mapping_rules(profile, "tpl", fields)

        assert [m.target_location for m in mappings] == ["C2"]
        stored = rule_store.get_rule(broken.id)
        assert stored.failure_count == 1
        assert stored.success_rate == pytest.approx(0.9)
        assert rule_store.get_rule(working.id).failure_count == 0

    def test_unknown_transformation_fails_rule(self, rule_store, profile, fields):
        r = rule(actions=[action("Total Amount", "C2", transformation="reverse")])
        rule_store.save_rule(r)
        assert RuleEngine(rule_store).apply_mapping_rules(profile, "tpl", fields) == []
        assert rule_store.get_rule(r.id).failure_count == 1

    def test_optional_missing_field_is_skipped(self, rule_store, profile, fields):
        rule_store.save_rule(rule(actions=[action("Due Date", "E2"), action("Total Amount", "C2")]))
        mappings = RuleEngine(rule_store).apply_mapping_rules(profile, "tpl", fields)
        assert [m.target_location for m in mappings] == ["C2"]

    def test_outcome_recorded_once_per_application_key(self, rule_store, profile, fields):
        r = rule(actions=[action("Total Amount", "C2")])
        rule_store.save_rule(r)
        engine = RuleEngine(rule_store)

        engine.apply_mapping_rules(profile, "tpl", fields, application_key="doc-1")
        engine.apply_mapping_rules(profile, "tpl", fields, application_key="doc-1")
        engine.apply_mapping_rules(profile, "tpl", fields, application_key="doc-2")

        assert rule_store.get_rule(r.id).usage_count == 2


class TestTestRule:
    def test_preview_with_warnings(self, rule_store, profile, fields):
        r = rule(
            actions=[
                action("Total Amount", "C2", transformation="upper"),
                action("Due Date", "E2"),
                action("Currency", "D2", default_value="MYR"),
            ],
            success_rate=0.8,
        )
        result = RuleEngine(rule_store).test_rule(r, profile, fields)

        assert result.would_apply is True
        assert [p.target_location for p in result.preview_mappings] == ["C2", "D2"]
        assert result.preview_mappings[1].used_default is True
        assert result.warnings == ["Field 'Due Date' not found and no default value specified"]
        assert result.mapped_fields == ["Total Amount"]
        assert result.unmapped_fields == ["Account Number"]
        assert result.predicted_success == 0.8
        assert result.estimated_confidence == pytest.approx(2 / 3)

    def test_does_not_persist(self, rule_store, profile, fields):
        r = rule(actions=[action("Total Amount", "C2")])
        rule_store.save_rule(r)
        RuleEngine(rule_store).test_rule(r, profile, fields)
        assert rule_store.get_rule(r.id).usage_count == 0

    def test_non_matching_rule(self, rule_store, profile, fields):
        r = rule(conditions=[condition(value="Maxis")], actions=[action("Total Amount", "C2")])
        result = RuleEngine(rule_store).test_rule(r, profile, fields)
        assert result.would_apply is False
        assert result.preview_mappings == []
        assert result.unmapped_fields == ["Account Number", "Total Amount"]
        assert result.summary.startswith("Rule 'TNB bill' would not apply to this document")


class TestRuleAdministration:
    def test_create_rule_from_mappings(self, rule_store, profile):
        mappings = [
            TemplateFieldMapping(field_name="Total Amount", target_location="C2", is_required=True),
            TemplateFieldMapping(field_name="Account Number", target_location="B2", display_order=1),
        ]
        created = RuleEngine(rule_store).create_rule_from_mappings(
            "  TNB monthly  ", "from accepted mapping", profile, mappings
        )

        assert created.name == "TNB monthly"
        assert created.priority == 100
        assert created.success_rate == 1.0
        assert [(c.condition_type, c.value) for c in created.conditions] == [
            (ConditionType.SUPPLIER, "TNB"),
            (ConditionType.DOCUMENT_TYPE, "Utility Bill"),
            (ConditionType.TEMPLATE_PATTERN, "TNB-2024"),
        ]
        assert all(c.is_required for c in created.conditions)
        assert [a.target_location for a in created.actions] == ["C2", "B2"]
        assert created.actions[0].is_required is True
        assert rule_store.get_rule(created.id) is not None

        # the created rule matches the profile it was made from
        assert RuleEngine(rule_store).evaluate_rule(created, profile).should_apply is True

    def test_create_rule_skips_blank_profile_attributes(self, rule_store):
        created = RuleEngine(rule_store).create_rule_from_mappings(
            "Supplier only", "", DocumentProfile(supplier_name="TNB", document_type="  "), []
        )
        assert [c.condition_type for c in created.conditions] == [ConditionType.SUPPLIER]

    def test_create_rule_requires_name(self, rule_store, profile):
        with pytest.raises(ValidationError):
            RuleEngine(rule_store).create_rule_from_mappings("   ", "", profile, [])

    def test_activation(self, rule_store):
        r = rule()
        rule_store.save_rule(r)
        engine = RuleEngine(rule_store)

        assert engine.deactivate_rule(r.id) is True
        assert rule_store.get_rule(r.id).is_active is False
        assert engine.toggle_rule_activation(r.id) is True
        assert engine.toggle_rule_activation(r.id) is False
        assert engine.activate_rule(r.id) is True
        assert rule_store.get_rule(r.id).is_active is True

    def test_missing_rule(self, rule_store):
        engine = RuleEngine(rule_store)
        assert engine.activate_rule("nope") is False
        assert engine.toggle_rule_activation("nope") is None
        assert engine.update_rule_priority("nope", 1) is False
        assert engine.delete_rule("nope") is False

    def test_update_priority(self, rule_store):
        r = rule()
        rule_store.save_rule(r)
        assert RuleEngine(rule_store).update_rule_priority(r.id, 7) is True
        assert rule_store.get_rule(r.id).priority == 7

    def test_delete_rule(self, rule_store):
        r = rule(actions=[action("Total Amount", "C2")])
        rule_store.save_rule(r)
        assert RuleEngine(rule_store).delete_rule(r.id) is True
        assert rule_store.get_rule(r.id) is None
        assert len(rule_store) == 0

    def test_statistics(self, rule_store, profile, fields):
        engine = RuleEngine(rule_store)
        busy = rule("busy", actions=[action("Total Amount", "C2")])
        idle = rule("idle", conditions=[condition(value="Maxis")])
        off = rule("off", is_active=False)
        for r in (busy, idle, off):
            rule_store.save_rule(r)

        engine.apply_mapping_rules(profile, "tpl", fields, "doc-1")
        engine.apply_mapping_rules(profile, "tpl", fields, "doc-2")
        engine.record_rule_failure(idle.id)

        stats = engine.get_statistics()
        assert stats.total_rules == 3
        assert stats.active_rules == 2
        assert stats.total_applications == 3
        assert stats.total_failures == 1
        assert [s.name for s in stats.most_used] == ["busy", "idle"]
        assert stats.average_success_rate == pytest.approx((1.0 + 0.9) / 2)
