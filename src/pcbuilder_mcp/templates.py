"""Validation of specification values and compatibility rule records."""

from .models import RULE_TYPES, CompatibilityRule, Component, RuleValidationError, SpecificationTemplate
from .specs import ENUM_DATA_TYPES, parse_bool, parse_number


def validate_spec_value(template: SpecificationTemplate, raw: str | None) -> list[str]:
    """Check one raw value against its template.

    Args:
        template: Template the value is stored under
        raw: Raw string value, None or blank when not provided

    Returns:
        List of error messages (empty when valid)
    """
    label = template.label
    if raw is None or not str(raw).strip():
        if template.is_required:
            return [f"{label} is required"]
        return []

    raw = str(raw).strip()
    errors: list[str] = []

    if template.data_type == "number":
        number = parse_number(raw)
        if number is None:
            errors.append(f"{label} must be a number")
        else:
            if template.min_value is not None and number < template.min_value:
                errors.append(f"{label} must be at least {template.min_value:g}")
            if template.max_value is not None and number > template.max_value:
                errors.append(f"{label} must be at most {template.max_value:g}")

    elif template.data_type == "boolean":
        if parse_bool(raw) is None:
            errors.append(f"{label} must be yes/no")

    elif template.data_type in ENUM_DATA_TYPES and template.enum_values:
        allowed = {v.lower() for v in template.enum_values}
        if raw.lower() not in allowed:
            errors.append(f"{label} must be one of: {', '.join(template.enum_values)}")

    return errors


def validate_component_specs(component: Component, templates: list[SpecificationTemplate]) -> list[str]:
    """Validate a component's specifications against its category's templates."""
    errors: list[str] = []
    for template in templates:
        if template.category_id != component.category_id:
            continue
        errors.extend(validate_spec_value(template, component.specifications.get(template.name.lower())))
    return errors


def validate_rule(rule: CompatibilityRule, templates_by_id: dict[str, SpecificationTemplate]) -> None:
    """Check a rule is well-formed against the known templates.

    Raises:
        RuleValidationError: describing the first problem found
    """
    if rule.rule_type not in RULE_TYPES:
        raise RuleValidationError(f"Rule {rule.id}: invalid rule type '{rule.rule_type}'")

    for template_id, category_id, role in (
        (rule.primary_specification_template_id, rule.primary_category_id, "primary"),
        (rule.secondary_specification_template_id, rule.secondary_category_id, "secondary"),
    ):
        template = templates_by_id.get(template_id)
        if template is None:
            raise RuleValidationError(f"Rule {rule.id}: {role} template '{template_id}' not found")
        if template.category_id != category_id:
            raise RuleValidationError(
                f"Rule {rule.id}: {role} template '{template_id}' belongs to category "
                f"'{template.category_id}', not '{category_id}'"
            )

    if rule.rule_type == "compatible_values" and not rule.compatible_values:
        raise RuleValidationError(f"Rule {rule.id}: compatible_values rule has no values")

    if rule.rule_type == "range_check":
        if rule.min_value is None and rule.max_value is None:
            raise RuleValidationError(f"Rule {rule.id}: range_check rule needs min_value or max_value")
        if rule.min_value is not None and rule.max_value is not None and rule.min_value > rule.max_value:
            raise RuleValidationError(
                f"Rule {rule.id}: min_value {rule.min_value:g} is greater than max_value {rule.max_value:g}"
            )
