"""Jinja2 placeholder rendering for notification content.

Placeholders are ``{{ name }}`` markers. Values come from the supplied
variables, then from declared defaults; anything else is left in place as
an unresolved marker so partially rendered content can still be delivered.
"""

import logging
from collections.abc import Mapping
from typing import Any

from jinja2 import DebugUndefined, TemplateSyntaxError, meta
from jinja2.sandbox import SandboxedEnvironment

from notification_engine.domain.template import TemplateVariable
from notification_engine.errors import ConfigurationError

logger = logging.getLogger(__name__)

# DebugUndefined renders a missing name back as "{{ name }}".
_env = SandboxedEnvironment(
    autoescape=False,
    undefined=DebugUndefined,
    keep_trailing_newline=True,
)


def find_placeholders(template_str: str) -> set[str]:
    """Return the variable names referenced by a template string.

    Raises ConfigurationError if the string is not valid template syntax.
    """
    try:
        ast = _env.parse(template_str)
    except TemplateSyntaxError as exc:
        raise ConfigurationError(f"Invalid template syntax: {exc}") from exc
    return meta.find_undeclared_variables(ast)


def _build_context(
    variables: Mapping[str, Any],
    declared: Mapping[str, TemplateVariable],
) -> dict[str, str]:
    context = {
        name: var.default_value
        for name, var in declared.items()
        if var.default_value is not None
    }
    context.update({k: str(v) for k, v in variables.items() if v is not None})
    return context


def unresolved_placeholders(
    template_str: str,
    variables: Mapping[str, Any],
    declared: Mapping[str, TemplateVariable],
) -> set[str]:
    """Names that would be left unrendered for these inputs."""
    return find_placeholders(template_str) - _build_context(variables, declared).keys()


def render(
    template_str: str,
    variables: Mapping[str, Any],
    declared: Mapping[str, TemplateVariable] | None = None,
) -> str:
    """Substitute placeholders in *template_str*.

    Pure and idempotent: rendering an already-rendered string with no
    remaining markers returns it unchanged. Unresolved placeholders are
    logged, never raised.
    """
    declared = declared or {}
    context = _build_context(variables, declared)

    try:
        template = _env.from_string(template_str)
    except TemplateSyntaxError as exc:
        raise ConfigurationError(f"Invalid template syntax: {exc}") from exc

    missing = meta.find_undeclared_variables(_env.parse(template_str)) - context.keys()
    if missing:
        logger.warning(
            "Unresolved placeholders left in rendered content",
            extra={"placeholders": sorted(missing)},
        )

    return template.render(context)


def render_fields(
    fields: Mapping[str, str],
    variables: Mapping[str, Any],
    declared: Mapping[str, TemplateVariable] | None = None,
) -> dict[str, str]:
    """Render every field of one channel's content."""
    return {name: render(text, variables, declared) for name, text in fields.items()}
