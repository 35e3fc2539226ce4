"""Input resolution and prompt rendering."""
import re
from typing import Any

from skill_runtime.runtime.budget import serialize

_PLACEHOLDER = re.compile(r"\{\{\s*([\w.-]+)\s*\}\}")

_MISSING = object()


def _walk(value: Any, segments: list[str]) -> Any:
    for segment in segments:
        if isinstance(value, dict):
            if segment not in value:
                return _MISSING
            value = value[segment]
        elif isinstance(value, list) and segment.isdigit():
            index = int(segment)
            if index >= len(value):
                return _MISSING
            value = value[index]
        else:
            return _MISSING
    return value


def resolve_key(
    key: str,
    step_outputs: dict[str, Any],
    workspace_context: dict[str, Any],
) -> tuple[bool, Any, str | None]:
    """
    Resolve one input key.

    Prior step outputs take precedence over workspace context keys with the
    same root.

    Args:
        key: Input key, optionally a dotted path
        step_outputs: Outputs of completed steps by output key
        workspace_context: Tenant workspace context

    Returns:
        (found, value, source) where source is ``"step"``, ``"workspace"`` or None
    """
    root, _, rest = key.partition(".")
    for source_name, source in (("step", step_outputs), ("workspace", workspace_context)):
        if root not in source:
            continue
        value = _walk(source[root], rest.split(".")) if rest else source[root]
        if value is _MISSING or value is None:
            return False, None, source_name
        return True, value, source_name
    return False, None, None


def render_template(
    template: str,
    step_outputs: dict[str, Any],
    workspace_context: dict[str, Any],
) -> str:
    """
    Replace ``{{path}}`` placeholders.

    Structured values are serialized as compact JSON. Unknown placeholders
    are left in place so that authoring mistakes stay visible in the prompt.
    """

    def replace(match: re.Match) -> str:
        found, value, _ = resolve_key(match.group(1), step_outputs, workspace_context)
        if not found:
            return match.group(0)
        return serialize(value)

    return _PLACEHOLDER.sub(replace, template)


def placeholders(template: str | None) -> list[str]:
    """Paths referenced by ``{{path}}`` placeholders, in order."""
    return _PLACEHOLDER.findall(template or "")
