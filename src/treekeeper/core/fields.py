"""validation of node names and custom field values."""

from __future__ import annotations

import re
from typing import Optional
from urllib.parse import urlparse

from .models import CustomField, FieldType, NodeType


YOUTUBE_URL = re.compile(r"^(https?://)?(www\.)?(youtube\.com|youtu\.be)/.+")


def is_valid_url(url: str) -> bool:
    parsed = urlparse(url)
    return bool(parsed.scheme) and bool(parsed.netloc or parsed.path)


def is_valid_youtube_url(url: str) -> bool:
    return YOUTUBE_URL.match(url) is not None


def validate_node_name(name: str) -> bool:
    return len(name.strip()) > 0


def validate_required_fields(node_type: Optional[NodeType], custom_fields: list[CustomField]) -> dict[str, str]:
    """errors for required definitions with no value, keyed by field id (or definition id)."""
    errors: dict[str, str] = {}
    if node_type is None:
        return errors
    for definition in node_type.field_definitions:
        if not definition.required:
            continue
        match = next(
            (f for f in custom_fields if f.definition_id == definition.id or f.name == definition.name),
            None,
        )
        if match is None or not match.value.strip():
            errors[match.id if match else definition.id] = f"{definition.name} is required"
    return errors


def validate_field_types(custom_fields: list[CustomField]) -> dict[str, str]:
    """errors for link and youtube fields whose values are not urls of that kind."""
    errors: dict[str, str] = {}
    for f in custom_fields:
        if not f.value:
            continue
        if f.type is FieldType.LINK and not is_valid_url(f.value):
            errors[f.id] = "enter a valid url"
        elif f.type is FieldType.YOUTUBE and not is_valid_youtube_url(f.value):
            errors[f.id] = "enter a valid youtube url"
    return errors


def validate_node_form(
    name: str,
    node_type: Optional[NodeType],
    custom_fields: list[CustomField],
) -> dict[str, str]:
    """all errors for a node edit. empty dict means valid."""
    errors: dict[str, str] = {}
    if not validate_node_name(name):
        errors["nodeName"] = "node name is required"
    errors.update(validate_required_fields(node_type, custom_fields))
    errors.update(validate_field_types(custom_fields))
    return errors
