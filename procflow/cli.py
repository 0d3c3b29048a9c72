"""
procflow CLI entry point.

Commands:
- procflow validate: Validate a workflow template
- procflow info: Show template information
- procflow run: Replay an event file against a template
- procflow template-id: Compute a content-addressed template id
- procflow version: Show version information
"""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import click
import yaml
from pydantic import ValidationError
from rich.text import Text

from procflow import __version__
from procflow.cli_ui import (
    config_panel,
    console,
    dim,
    error,
    heading,
    key_value,
    make_table,
    source_preview,
    success,
    title,
    warning,
)
from procflow.errors import InstanceCreationError, TemplateError


def setup_logging(debug: bool = False, quiet: bool = False, log_level: str = "INFO") -> None:
    """
    Configure logging. Logs go to stderr so stdout stays parseable.

    ``log_level`` is the base level; ``debug`` lowers it to DEBUG and
    ``quiet`` raises it to at least WARNING.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    if debug:
        level = logging.DEBUG
    elif quiet:
        level = max(level, logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
        force=True,
    )


def _parse_var(raw: str) -> Tuple[str, str, str]:
    """Split ``namespace.key=value``."""
    path, sep, value = raw.partition("=")
    namespace, dot, key = path.strip().partition(".")
    if not sep or not dot or not namespace or not key:
        raise click.BadParameter(f"expected namespace.key=value, got {raw!r}", param_hint="--var")
    return namespace, key, value


def _load_events(path: Path) -> List[Dict[str, Any]]:
    """Load a YAML or JSON event file: a list, or a mapping with an ``events`` list."""
    content = path.read_text(encoding="utf-8")
    data = json.loads(content) if path.suffix == ".json" else yaml.safe_load(content)

    if isinstance(data, dict):
        data = data.get("events")
    if not isinstance(data, list):
        raise click.BadParameter(f"{path} must contain a list of events", param_hint="EVENTS")
    return data


def _load_template(template_path: Path):
    from procflow.workflow.parser import TemplateParser

    return TemplateParser.parse_file(template_path)


@click.group()
@click.version_option(version=__version__, prog_name="procflow")
def main() -> None:
    """procflow - Rule-driven workflow engine.

    Validate workflow templates and replay events against them.
    """
    pass


@main.command()
@click.argument(
    "template_path",
    type=click.Path(exists=True, path_type=Path),
)
def validate(template_path: Path) -> None:
    """Validate a workflow template file.

    Checks the state machine, rule conditions and state references.

    Example:
        procflow validate interview.yaml
    """
    try:
        template = _load_template(template_path)
    except (TemplateError, ValidationError, ValueError) as e:
        error(f"Validation error: {e}")
        raise SystemExit(1)

    definition = template.definition
    config_panel(
        "✓ Valid Template",
        {
            "Name": template.name,
            "Version": template.version,
            "Template ID": template.template_id or "(assigned on registration)",
            "States": str(len(definition.states)),
            "Transitions": str(len(definition.transitions)),
            "Rules": str(len(template.message_rules)),
            "Initial": definition.initial or "-",
            "Final": ", ".join(definition.final_states) or "-",
        },
    )


@main.command()
@click.argument(
    "template_path",
    type=click.Path(exists=True, path_type=Path),
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Show detailed information",
)
def info(template_path: Path, verbose: bool) -> None:
    """Show detailed template information.

    Displays states, transitions, message rules and variables.

    Example:
        procflow info interview.yaml --verbose
    """
    try:
        template = _load_template(template_path)
    except (TemplateError, ValidationError, ValueError) as e:
        error(str(e))
        raise SystemExit(1)

    definition = template.definition

    console.print()
    title(template.name, template.version)
    if template.description:
        dim(template.description)

    state_rows: List[List[str]] = []
    for state in definition.states:
        flags = []
        if state == definition.initial:
            flags.append("[green]initial[/]")
        if definition.is_final(state):
            flags.append("[blue]final[/]")
        actions = ", ".join(a.type.value for a in template.get_state_actions(state))
        row = [state, ", ".join(flags) or "-"]
        if verbose:
            row.append(actions or "-")
        state_rows.append(row)
    make_table(
        "States",
        ["Name", "Type", "Actions"] if verbose else ["Name", "Type"],
        state_rows,
    )

    if definition.transitions:
        t_rows = [
            [t.source, f"'{t.label}'", f"→ {t.target}"] for t in definition.transitions
        ]
        make_table("Transitions", ["From", "Event", "To"], t_rows)

    if template.message_rules:
        r_rows = []
        for index, rule in enumerate(template.message_rules):
            target = rule.transition.to if rule.transition else "-"
            row = [str(index), f"[cyan]{rule.match_type}[/]", str(len(rule.conditions)), target]
            if verbose:
                row.append(
                    "; ".join(f"{k} = {v}" for k, v in rule.conditions.items()) or "-"
                )
            r_rows.append(row)
        columns = ["#", "Matches", "Conditions", "Transition"]
        if verbose:
            columns.append("Detail")
        make_table("Message Rules", columns, r_rows)

    if template.variables:
        console.print()
        console.print("[bold]Variables:[/]")
        for namespace, keys in template.variables.items():
            for key, spec in keys.items():
                marker = " [red]*[/]" if spec.required else ""
                key_value(f"{namespace}.{key}", f"[dim]{spec.type}[/]{marker}", indent=2)

    if verbose:
        source_preview(template.state_machine.fsl, title="FSL")

    console.print()


@main.command()
@click.argument(
    "template_path",
    type=click.Path(exists=True, path_type=Path),
)
@click.argument(
    "events_path",
    type=click.Path(exists=True, path_type=Path),
)
@click.option(
    "--var",
    "variables",
    multiple=True,
    help="Instance variable as namespace.key=value (repeatable)",
)
@click.option(
    "--initial",
    type=str,
    default=None,
    help="Override the template's initial state",
)
@click.option(
    "--json",
    "as_json",
    is_flag=True,
    help="Print the final instance and per-event results as JSON",
)
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="Path to procflow.yaml config file",
)
@click.option(
    "--debug/--no-debug",
    default=False,
    help="Enable debug logging",
)
def run(
    template_path: Path,
    events_path: Path,
    variables: Tuple[str, ...],
    initial: Optional[str],
    as_json: bool,
    config: Optional[Path],
    debug: bool,
) -> None:
    """Replay an event file against a template.

    Creates a fresh instance, feeds it every event in order and prints the
    resulting transitions and generated messages. Replays are deterministic.

    Examples:

        procflow run interview.yaml events.yaml --var candidate.email=ana@example.com

        procflow run interview.yaml events.yaml --json
    """
    from procflow.config.settings import ProcflowSettings
    from procflow.tracing.otel_tracer import WorkflowTracer
    from procflow.workflow.parser import TemplateRegistry
    from procflow.workflow.runtime import WorkflowRuntime

    settings = ProcflowSettings(_config_path=str(config) if config else None)
    setup_logging(debug or settings.debug, quiet=as_json, log_level=settings.log_level)

    supplied: Dict[str, Dict[str, str]] = {}
    for raw in variables:
        namespace, key, value = _parse_var(raw)
        supplied.setdefault(namespace, {})[key] = value

    try:
        template = _load_template(template_path)
        events = _load_events(events_path)
    except (TemplateError, ValidationError, ValueError, yaml.YAMLError) as e:
        error(str(e))
        raise SystemExit(1)

    tracer = WorkflowTracer(settings.otel)
    runtime = WorkflowRuntime(
        registry=TemplateRegistry(id_length=settings.engine.template_id_length),
        tracer=tracer,
        default_initial_state=settings.engine.default_initial_state,
    )

    try:
        instance, results = asyncio.run(
            runtime.replay(template, events, variables=supplied, initial_state=initial)
        )
    except InstanceCreationError as e:
        error(str(e), hint="Pass variables with --var namespace.key=value")
        raise SystemExit(1)
    finally:
        tracer.shutdown()

    if as_json:
        payload = {
            "instance": instance.to_dict(),
            "results": [r.to_dict() for r in results],
        }
        click.echo(json.dumps(payload, indent=2, default=str))
        return

    rows = []
    for index, (event, result) in enumerate(zip(events, results)):
        if result.transitioned:
            outcome = f"{result.from_state} → [cyan]{result.to_state}[/]"
        elif result.matched:
            outcome = f"{result.from_state} (stay)"
        else:
            outcome = "[dim]no match[/]"
        rule = "-" if result.rule_index is None else str(result.rule_index)
        problem = f"[red]{type(result.error).__name__}[/]" if result.error else ""
        event_type = event.get("type", "?") if isinstance(event, dict) else "?"
        rows.append([str(index), str(event_type), rule, outcome, problem])
    make_table("Events", ["#", "Type", "Rule", "Outcome", "Error"], rows)

    messages = [r.generated_message for r in results if r.generated_message]
    if messages:
        heading("Generated messages:")
        for message in messages:
            key_value(message.type, json.dumps(message.fields, default=str), indent=2)

    for result in results:
        if result.error:
            warning(str(result.error))

    console.print()
    console.print(
        Text.assemble(
            ("Final state: ", "bold"),
            (instance.current_state, "bold cyan"),
        )
    )
    dim(" → ".join(instance.get_state_sequence()))
    if not any(r.error for r in results):
        success(f"Processed {len(results)} events")


@main.command("template-id")
@click.argument("name", type=str)
@click.option(
    "--timestamp",
    type=int,
    default=None,
    help="Creation time in epoch milliseconds (default: now)",
)
@click.option(
    "--length",
    type=click.IntRange(1, 64),
    default=12,
    show_default=True,
    help="Number of hex characters",
)
def template_id(name: str, timestamp: Optional[int], length: int) -> None:
    """Compute the content-addressed id for a template name.

    Example:
        procflow template-id "Interview Scheduling" --timestamp 1700000000000
    """
    from procflow.identifiers import content_id

    click.echo(content_id(name, timestamp, length=length))


@main.command()
def version() -> None:
    """Show version information."""
    title("procflow", __version__)


if __name__ == "__main__":
    main()
