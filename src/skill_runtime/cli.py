"""
CLI for skill definition authors.

Provides terminal access to:
- Definition validation (YAML file or directory)
- Step table and budget inspection
"""

import argparse
import json
import sys
from pathlib import Path

from skill_runtime.config import get_settings
from skill_runtime.runtime.contracts import SkillDefinition, StepDefinition, StepKind
from skill_runtime.runtime.errors import SkillDefinitionError
from skill_runtime.runtime.loader import SKILL_FILE_PATTERNS, load_skill_from_file
from skill_runtime.runtime.validation import validate_skill_definition


def _skill_files(path: Path) -> list[Path]:
    """Expand a file or directory argument into skill files."""
    if path.is_dir():
        files: list[Path] = []
        for pattern in SKILL_FILE_PATTERNS:
            files.extend(sorted(path.glob(pattern)))
        return files
    return [path]


def cmd_validate(args: argparse.Namespace) -> int:
    """Validate skill definitions."""
    settings = get_settings()
    files = _skill_files(Path(args.path))
    if not files:
        print(f"Error: No skill files found in {args.path}")
        return 1

    results = []
    for skill_file in files:
        try:
            skill = load_skill_from_file(skill_file)
            validate_skill_definition(skill, settings=settings)
        except SkillDefinitionError as e:
            results.append(
                {"path": str(skill_file), "valid": False, "error_type": e.error_type, "error": e.message}
            )
            continue
        results.append(
            {"path": str(skill_file), "valid": True, "skill": str(skill), "steps": len(skill.steps)}
        )

    if args.json:
        print(json.dumps(results, indent=2))
    else:
        for result in results:
            if result["valid"]:
                print(f"OK       {result['path']}: {result['skill']} ({result['steps']} steps)")
            else:
                print(f"INVALID  {result['path']}: [{result['error_type']}] {result['error']}")

    return 0 if all(r["valid"] for r in results) else 1


def _step_limits(step: StepDefinition) -> str:
    limits = []
    if step.kind == StepKind.COMPUTE and step.max_output_items is not None:
        limits.append(f"max_items={step.max_output_items}")
    if step.kind == StepKind.CLASSIFY:
        limits.append(f"item_ceiling={step.item_ceiling}")
    if step.kind == StepKind.REASON:
        limits.append(f"tools={','.join(step.tools or []) or '-'}")
        if step.max_tool_calls is not None:
            limits.append(f"max_tool_calls={step.max_tool_calls}")
    if step.timeout_s:
        limits.append(f"timeout={step.timeout_s}s")
    if not step.critical:
        limits.append("optional")
    return " ".join(limits)


def _print_skill(skill: SkillDefinition) -> None:
    print(f"\n{skill.name or skill.id} ({skill})")
    if skill.description:
        print(f"  {skill.description}")
    print(f"  output: {skill.output_format.value}")
    if skill.schedule and (skill.schedule.cron or skill.schedule.trigger):
        print(f"  schedule: {skill.schedule.cron or ''} {skill.schedule.trigger or ''}".rstrip())
    print()
    print(f"  {'#':<3}{'step':<28}{'kind':<10}{'inputs':<40}limits")
    for index, step in enumerate(skill.steps, start=1):
        inputs = ", ".join(step.inputs) or "-"
        print(f"  {index:<3}{step.id:<28}{step.kind.value:<10}{inputs:<40}{_step_limits(step)}")


def cmd_inspect(args: argparse.Namespace) -> int:
    """Print step tables and the budget that applies to them."""
    settings = get_settings()
    files = _skill_files(Path(args.path))

    exit_code = 0
    for skill_file in files:
        try:
            skill = load_skill_from_file(skill_file)
        except SkillDefinitionError as e:
            print(f"Error: {e.message}")
            exit_code = 1
            continue
        _print_skill(skill)

    print("\nToken budget")
    print(f"  step warn threshold:   {settings.step_input_warn_tokens}")
    print(f"  step hard ceiling:     {settings.step_input_hard_ceiling_tokens}")
    print(f"  run soft target:       {settings.run_soft_target_tokens}")
    print(f"  run hard ceiling:      {settings.run_hard_ceiling_tokens or 'none'}")
    print(f"  compute array cap:     {settings.compute_output_cap_bytes} bytes")
    print(f"  reason fan-in cap:     {settings.reason_input_array_cap} items")
    print(f"  classify item ceiling: {settings.classify_item_ceiling}")
    return exit_code


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="skill-runtime",
        description="Skill Runtime CLI - validate and inspect skill definitions",
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    validate_parser = subparsers.add_parser("validate", help="Validate skill definitions")
    validate_parser.add_argument("path", help="Skill YAML file or directory")
    validate_parser.add_argument("--json", action="store_true", help="Print results as JSON")

    inspect_parser = subparsers.add_parser("inspect", help="Show step tables and budgets")
    inspect_parser.add_argument("path", help="Skill YAML file or directory")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    commands = {
        "validate": cmd_validate,
        "inspect": cmd_inspect,
    }
    return commands[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
