"""Registration-time rules for skill definitions.

Rules:
- a skill has at least one step; step ids and output keys never collide
- the first step is not a reason step (reasoning needs prepared data)
- classify steps declare an item ceiling no larger than the configured maximum
- compute steps declare no tool access
- inputs reference only strictly earlier steps or workspace context keys
- a reason step never consumes a whole compute output declared larger than the
  reason fan-in cap
- tool and compute function names resolve when registries are supplied

The registry applies these when a definition is registered and the
orchestrator applies them again before every run.
"""
from skill_runtime.config import Settings, get_settings
from skill_runtime.runtime.compute import ComputeRegistry
from skill_runtime.runtime.contracts import SkillDefinition, StepDefinition, StepKind
from skill_runtime.runtime.errors import (
    SkillDefinitionError,
    StepOrderError,
    UnknownComputeFunctionError,
)
from skill_runtime.runtime.tools import ToolRegistry


def validate_skill_definition(
    skill: SkillDefinition,
    settings: Settings | None = None,
    tool_registry: ToolRegistry | None = None,
    compute_registry: ComputeRegistry | None = None,
) -> None:
    """
    Validate a skill definition.

    Args:
        skill: Definition to validate
        settings: Limits to apply (global settings if omitted)
        tool_registry: When given, tool names must be registered
        compute_registry: When given, compute functions must be registered

    Raises:
        SkillDefinitionError: On the first rule violated
        StepOrderError: If a step references its own or a later output
    """
    settings = settings or get_settings()

    if not skill.steps:
        raise SkillDefinitionError(f"Skill '{skill.id}' has no steps", skill_id=skill.id)

    first = skill.steps[0]
    if first.kind == StepKind.REASON:
        raise SkillDefinitionError(
            f"Skill '{skill.id}' starts with reason step '{first.id}'; "
            "reasoning requires a prior compute or classify step",
            skill_id=skill.id,
            step_id=first.id,
        )

    _check_unique(skill)

    for index, step in enumerate(skill.steps):
        _check_step_shape(skill, step, settings)
        _check_ordering(skill, index, step)
        _check_reason_fan_in(skill, index, step, settings)
        if (
            compute_registry is not None
            and step.kind == StepKind.COMPUTE
            and step.compute_function not in compute_registry
        ):
            raise UnknownComputeFunctionError(
                f"Step '{step.id}' of skill '{skill.id}' references unknown compute "
                f"function '{step.compute_function}' "
                f"(registered: {', '.join(compute_registry.list_functions()) or 'none'})",
                skill_id=skill.id,
                step_id=step.id,
            )

    if tool_registry is not None:
        _check_tools(skill, tool_registry)


def _check_unique(skill: SkillDefinition) -> None:
    owners: dict[str, int] = {}
    for index, step in enumerate(skill.steps):
        for name in {step.id, step.result_key}:
            owner = owners.setdefault(name, index)
            if owner != index:
                raise SkillDefinitionError(
                    f"Skill '{skill.id}' uses '{name}' for both step "
                    f"'{skill.steps[owner].id}' and step '{step.id}'",
                    skill_id=skill.id,
                    step_id=step.id,
                )


def _check_tools(skill: SkillDefinition, tool_registry: ToolRegistry) -> None:
    unknown = sorted(name for name in skill.tool_names() if name not in tool_registry)
    if not unknown:
        return
    name = unknown[0]
    step = next(s for s in skill.steps if name in (s.tools or []))
    raise SkillDefinitionError(
        f"Step '{step.id}' of skill '{skill.id}' references unknown tool '{name}' "
        f"(registered: {', '.join(tool_registry.list_tools()) or 'none'})",
        skill_id=skill.id,
        step_id=step.id,
        tool_name=name,
    )


def _check_step_shape(skill: SkillDefinition, step: StepDefinition, settings: Settings) -> None:
    if step.kind == StepKind.CLASSIFY:
        if step.item_ceiling is None:
            raise SkillDefinitionError(
                f"Classify step '{step.id}' of skill '{skill.id}' must declare item_ceiling",
                skill_id=skill.id,
                step_id=step.id,
            )
        if step.item_ceiling > settings.classify_item_ceiling:
            raise SkillDefinitionError(
                f"Classify step '{step.id}' of skill '{skill.id}' declares item_ceiling "
                f"{step.item_ceiling} (max {settings.classify_item_ceiling})",
                skill_id=skill.id,
                step_id=step.id,
            )
    if step.kind != StepKind.REASON and (step.tools is not None or step.max_tool_calls is not None):
        raise SkillDefinitionError(
            f"{step.kind.value.capitalize()} step '{step.id}' of skill '{skill.id}' "
            "must not declare tool access",
            skill_id=skill.id,
            step_id=step.id,
        )


def _check_ordering(skill: SkillDefinition, index: int, step: StepDefinition) -> None:
    earlier = set()
    for prior in skill.steps[:index]:
        earlier.update((prior.id, prior.result_key))
    not_yet_run = {}
    for later in skill.steps[index:]:
        not_yet_run.setdefault(later.id, later)
        not_yet_run.setdefault(later.result_key, later)

    for key, root in zip(step.inputs, step.input_roots()):
        if root in earlier:
            continue
        if root in not_yet_run:
            target = not_yet_run[root]
            relation = "itself" if target.id == step.id else f"later step '{target.id}'"
            raise StepOrderError(
                f"Step '{step.id}' of skill '{skill.id}' declares input '{key}' "
                f"produced by {relation}",
                skill_id=skill.id,
                step_id=step.id,
                input_key=key,
            )
        # Anything else is a workspace context key, resolved at run time.


def _check_reason_fan_in(
    skill: SkillDefinition,
    index: int,
    step: StepDefinition,
    settings: Settings,
) -> None:
    if step.kind != StepKind.REASON:
        return
    producers = {}
    for prior in skill.steps[:index]:
        producers[prior.id] = prior
        producers[prior.result_key] = prior
    cap = settings.reason_input_array_cap
    for key, root in zip(step.inputs, step.input_roots()):
        producer = producers.get(root)
        # Sub-paths are checked against actual sizes at run time.
        if (
            key == root
            and producer is not None
            and producer.kind == StepKind.COMPUTE
            and producer.max_output_items is not None
            and producer.max_output_items > cap
        ):
            raise SkillDefinitionError(
                f"Reason step '{step.id}' of skill '{skill.id}' consumes '{key}' from compute "
                f"step '{producer.id}' declaring up to {producer.max_output_items} items "
                f"(max {cap}); add a classify or aggregation step in between",
                skill_id=skill.id,
                step_id=step.id,
                input_key=key,
            )
