"""Tool argument validation against declared parameter schemas."""

from typing import Any, Dict, List

TYPE_MAP: Dict[str, Any] = {
    "string": str,
    "number": (int, float),
    "integer": int,
    "boolean": bool,
    "array": list,
    "object": dict,
    "null": type(None),
}


def _matches_type(value: Any, type_name: str) -> bool:
    expected = TYPE_MAP.get(type_name)
    if expected is None:
        return True
    # bool is an int subclass
    if type_name in ("number", "integer") and isinstance(value, bool):
        return False
    return isinstance(value, expected)


def validate_arguments(
    schema: Dict[str, Any],
    value: Any,
    path: str = "arguments",
) -> List[str]:
    """
    Validate a value against a JSON parameter schema.

    Supports ``type``, ``enum``, ``required``, ``properties``,
    ``additionalProperties: false``, ``items`` and numeric/length bounds.

    Returns:
        List of error messages, empty when the value is valid
    """
    errors: List[str] = []

    expected = schema.get("type")
    if expected is not None:
        types = expected if isinstance(expected, list) else [expected]
        if not any(_matches_type(value, t) for t in types):
            errors.append(f"{path}: expected {' or '.join(types)}, got {type(value).__name__}")
            return errors

    enum = schema.get("enum")
    if enum is not None and value not in enum:
        errors.append(f"{path}: must be one of {enum}")

    if isinstance(value, str):
        if "minLength" in schema and len(value) < schema["minLength"]:
            errors.append(f"{path}: shorter than {schema['minLength']} characters")
        if "maxLength" in schema and len(value) > schema["maxLength"]:
            errors.append(f"{path}: longer than {schema['maxLength']} characters")

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if "minimum" in schema and value < schema["minimum"]:
            errors.append(f"{path}: must be >= {schema['minimum']}")
        if "maximum" in schema and value > schema["maximum"]:
            errors.append(f"{path}: must be <= {schema['maximum']}")

    if isinstance(value, dict):
        properties: Dict[str, Any] = schema.get("properties", {})

        for name in schema.get("required", []):
            if name not in value:
                errors.append(f"{path}: missing required property '{name}'")

        for name, item in value.items():
            if name in properties:
                errors.extend(validate_arguments(properties[name], item, f"{path}.{name}"))
            elif schema.get("additionalProperties") is False:
                errors.append(f"{path}: unexpected property '{name}'")

    if isinstance(value, list) and isinstance(schema.get("items"), dict):
        for i, item in enumerate(value):
            errors.extend(validate_arguments(schema["items"], item, f"{path}[{i}]"))

    return errors


__all__ = ["validate_arguments"]
