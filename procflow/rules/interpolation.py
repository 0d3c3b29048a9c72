"""
Template interpolation.

Replaces ``{{ dotted.path }}`` placeholders with values resolved from a
LayeredContext. An unresolved placeholder renders as an empty string so one
bad reference cannot spoil a multi-field template.
"""

import logging
import re
from typing import Any, Dict, List, Mapping, Union

from procflow.rules.context import LayeredContext
from procflow.rules.values import to_text

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*([^{}]+?)\s*\}\}")

ContextLike = Union[LayeredContext, Mapping[str, Any]]


def as_context(context: ContextLike) -> LayeredContext:
    if isinstance(context, LayeredContext):
        return context
    return LayeredContext.of(context)


def placeholders(template: Any) -> List[str]:
    """List the paths referenced by a template, in order of appearance."""
    if not isinstance(template, str):
        return []
    return [m.group(1) for m in PLACEHOLDER_PATTERN.finditer(template)]


class TemplateInterpolator:
    """
    Render template strings against a layered context.

    Example:
        ```python
        interpolator = TemplateInterpolator()
        interpolator.render("Hi {{candidate.name}}", {"candidate": {"name": "Ana"}})
        # -> "Hi Ana"
        ```
    """

    def render(self, template: Any, context: ContextLike) -> str:
        """Render one template. Non-string templates are coerced to text."""
        if not isinstance(template, str):
            return to_text(template)

        ctx = as_context(context)

        def _substitute(match: "re.Match[str]") -> str:
            path = match.group(1)
            found, value = ctx.lookup(path)
            if not found:
                logger.debug(f"Unresolved placeholder {path!r} rendered as empty")
                return ""
            return to_text(value)

        return PLACEHOLDER_PATTERN.sub(_substitute, template)

    def render_mapping(self, templates: Mapping[str, Any], context: ContextLike) -> Dict[str, Any]:
        """Render every field of a mapping; nested mappings and lists recurse."""
        ctx = as_context(context)
        return {key: self._render_any(value, ctx) for key, value in templates.items()}

    def _render_any(self, value: Any, ctx: LayeredContext) -> Any:
        if isinstance(value, Mapping):
            return {k: self._render_any(v, ctx) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [self._render_any(v, ctx) for v in value]
        return self.render(value, ctx)
