"""
Declarative validation rules rendered as ozzo-validation calls.

Rules are derived from field constraints:
- string length becomes RuneLength, skipped when an optional value is empty
- numeric bounds become Min/Max with optional Exclusive()
- item counts become Length, with Required when items are mandatory
- trimmable strings are checked with CheckTrimmed
- nested objects and x-go-type values are validated through their own Validate()
"""

from __future__ import annotations

from .gotypes import NUMBER_KINDS, STRING_KINDS, VALIDATION, TypeMapper, go_literal
from .ir import Array, Custom, Field, Named, Object, PrimitiveKind, SchemaIR
from .sink import CodeSink

# CheckTrimmed accepts string and *string only
TRIMMABLE_KINDS = frozenset({PrimitiveKind.STRING, PrimitiveKind.TIME})


class Validators:
    """Knows which components get a ``Validate()`` method."""

    def __init__(self, mapper: TypeMapper) -> None:
        self.mapper = mapper
        self._known: dict[str, bool] = {}

    def has_validator(self, name: str) -> bool:
        if name in self._known:
            return self._known[name]
        # Recursive references are resolved as "no validator" while computing
        self._known[name] = False
        component = self.mapper.program.component(name)
        result = (
            component is not None
            and isinstance(component.schema, Object)
            and bool(component.schema.fields)
            and not component.schema.skip_validation
            and any(self._field_has_rules(f) for f in component.schema.fields)
        )
        self._known[name] = result
        return result

    def validates(self, schema: SchemaIR) -> bool:
        """Whether values of the schema validate themselves."""
        if isinstance(schema, Named):
            resolved = self.mapper.resolve(schema)
            if isinstance(resolved, Named) or resolved is schema:
                return False
            if isinstance(resolved, Object):
                return self.has_validator(schema.qualified_name) if resolved.fields else self._map_validates(resolved)
            return self.validates(resolved)
        if isinstance(schema, Array):
            return self.validates(schema.element)
        if isinstance(schema, Custom):
            return schema.validate
        if isinstance(schema, Object):
            return self._map_validates(schema)
        return False

    def _map_validates(self, schema: Object) -> bool:
        value = schema.additional.value
        return schema.additional.override is None and value is not None and self.validates(value)

    def _field_has_rules(self, field: Field) -> bool:
        if field.skip_validation:
            return False
        kind = self.mapper.primitive_kind(field.schema)
        resolved = self.mapper.resolve(field.schema)
        if field.trimmable and kind in TRIMMABLE_KINDS:
            return True
        if kind in STRING_KINDS and (field.min_length or field.max_length is not None):
            return True
        if kind in NUMBER_KINDS and (field.minimum is not None or field.maximum is not None):
            return True
        if isinstance(resolved, Array) and (resolved.min_items or resolved.max_items is not None):
            return True
        return self.validates(field.schema)

    def field_rules(self, field: Field, target: str, sink: CodeSink) -> list[str] | None:
        """Build the rule list of one field.

        Args:
            field: The field to validate.
            target: Go expression of the field value, e.g. ``body.Name``.
            sink: Sink the rules are rendered into.

        Returns:
            The rendered rules, or None when the field is not validated.
        """
        if not self._field_has_rules(field):
            return None

        v = sink.use(VALIDATION)
        kind = self.mapper.primitive_kind(field.schema)
        resolved = self.mapper.resolve(field.schema)
        pointer = self.mapper.is_pointer(field)
        rules: list[str] = []

        if kind in STRING_KINDS and (field.min_length or field.max_length is not None):
            minimum = field.min_length or 0
            if field.required and minimum > 0:
                rules.append(f"{v}.Required")
            elif not field.required and not pointer:
                rules.append(f'{v}.Skip.When({target} == "")')
            rules.append(f"{v}.RuneLength({minimum}, {field.max_length or 0})")

        if kind in NUMBER_KINDS:
            # ThresholdRule only compares values of the field's own type
            cast = int if kind is PrimitiveKind.INT else float
            if field.minimum is not None:
                rule = f"{v}.Min({go_literal(cast(field.minimum), kind)})"
                rules.append(rule + ".Exclusive()" if field.exclusive_minimum else rule)
            if field.maximum is not None:
                rule = f"{v}.Max({go_literal(cast(field.maximum), kind)})"
                rules.append(rule + ".Exclusive()" if field.exclusive_maximum else rule)

        if isinstance(resolved, Array) and (resolved.min_items or resolved.max_items is not None):
            minimum = resolved.min_items or 0
            if minimum > 0 and field.required:
                rules.append(f"{v}.Required")
            elif minimum > 0:
                rules.append(f"{v}.When({target} != nil, {v}.Required)")
            rules.append(f"{v}.Length({minimum}, {resolved.max_items or 0})")

        if field.trimmable and kind in TRIMMABLE_KINDS:
            rules.append(f"{v}.By({self._qual_runtime(sink, 'CheckTrimmed')})")

        return rules

    def _qual_runtime(self, sink: CodeSink, name: str) -> str:
        return sink.qual(self.mapper.components_path, name)


def render_struct_validation(
    validators: Validators,
    fields: list[tuple[Field, str]],
    pointer_target: str,
    sink: CodeSink,
) -> list[str] | None:
    """Render the ``validation.ValidateStruct`` call for a list of fields.

    Each entry pairs a field with its Go selector relative to ``pointer_target``.
    Returns the call lines, or None when nothing is validated.
    """
    entries: list[str] = []
    for field, selector in fields:
        rules = validators.field_rules(field, f"{pointer_target}.{selector}", sink)
        if rules is None:
            continue
        arguments = ", ".join([f"&{pointer_target}.{selector}", *rules])
        entries.append(f"{sink.use(VALIDATION)}.Field({arguments}),")

    if not entries:
        return None

    v = sink.use(VALIDATION)
    return [f"{v}.ValidateStruct(&{pointer_target},", *(f"\t{entry}" for entry in entries), ")"]
