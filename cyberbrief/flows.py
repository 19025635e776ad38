"""
Kestra flow definitions: loading, schema checks and YAML lint.

Flows live in <flows_dir>/<namespace>/*.yaml. Schema checks cover the fields
Kestra needs to accept a flow (id, namespace, tasks, inputs, triggers,
outputs) and the wiring between tasks: a task may only use the outputs of a
task declared before it.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Optional

import yaml
from yamllint import linter
from yamllint.config import YamlLintConfig, YamlLintConfigError


logger = logging.getLogger(__name__)


FLOW_ID_PATTERN = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9._-]*$")
NAMESPACE_PATTERN = re.compile(r"^[a-z0-9][a-z0-9._-]*$")
TASK_ID_PATTERN = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_-]*$")
PLUGIN_TYPE_PATTERN = re.compile(r"^[a-z][a-z0-9_]*(\.[a-zA-Z_][a-zA-Z0-9_]*)+$")

FLOW_KEYS = {
    "id", "namespace", "description", "labels", "inputs", "outputs", "variables",
    "tasks", "errors", "finally", "afterExecution", "listeners", "triggers",
    "pluginDefaults", "taskDefaults", "disabled", "revision", "concurrency",
    "retry", "sla", "workerGroup", "checks",
}

INPUT_TYPES = {
    "STRING", "ENUM", "SELECT", "MULTISELECT", "INT", "FLOAT", "BOOLEAN", "BOOL",
    "DATETIME", "DATE", "TIME", "DURATION", "FILE", "JSON", "URI", "SECRET",
    "ARRAY", "YAML", "EMAIL",
}

RETRY_TYPES = {"constant", "exponential", "random"}

SCHEDULE_TRIGGER_TYPES = {
    "io.kestra.plugin.core.trigger.Schedule",
    "io.kestra.core.models.triggers.types.Schedule",
}

SUBFLOW_TASK_TYPES = {
    "io.kestra.plugin.core.flow.Subflow",
    "io.kestra.core.tasks.flows.Subflow",
    "io.kestra.core.tasks.flows.Flow",
}

# Keys under which flowable tasks nest other tasks
NESTED_TASK_KEYS = ("tasks", "then", "else", "errors", "finally", "defaults")

FLOW_EXTENSIONS = (".yaml", ".yml")

DEFAULT_LINT_CONFIG = """\
extends: default
rules:
  document-start: disable
  line-length:
    max: 160
  truthy:
    check-keys: false
  comments:
    min-spaces-from-content: 1
"""

TEMPLATE_PATTERN = re.compile(r"\{\{(.*?)\}\}|\{%(.*?)%\}", re.DOTALL)


def _reference_pattern(root: str) -> re.Pattern:
    return re.compile(
        rf"(?<![\w.]){root}\s*(?:\.\s*([A-Za-z0-9_]+)|\[\s*['\"]([^'\"]+)['\"]\s*\])"
    )


OUTPUTS_REF = _reference_pattern("outputs")
INPUTS_REF = _reference_pattern("inputs")
VARS_REF = _reference_pattern("vars")

CRON_NICKNAMES = {
    "@yearly", "@annually", "@monthly", "@weekly", "@daily", "@midnight", "@hourly",
}
MONTH_NAMES = ["JAN", "FEB", "MAR", "APR", "MAY", "JUN", "JUL", "AUG", "SEP", "OCT", "NOV", "DEC"]
DAY_NAMES = ["SUN", "MON", "TUE", "WED", "THU", "FRI", "SAT"]

# (name, min, max, names usable in place of numbers, first name's value)
CRON_SECONDS_FIELD = ("second", 0, 59, None, 0)
CRON_FIELDS = [
    ("minute", 0, 59, None, 0),
    ("hour", 0, 23, None, 0),
    ("day of month", 1, 31, None, 0),
    ("month", 1, 12, MONTH_NAMES, 1),
    ("day of week", 0, 7, DAY_NAMES, 0),
]


class FlowError(Exception):
    """Raised when a flow file cannot be loaded."""
    pass


@dataclass
class FlowIssue:
    """A single problem found in a flow file."""

    path: str
    message: str
    severity: str = "error"

    @property
    def is_error(self) -> bool:
        return self.severity == "error"

    def __str__(self) -> str:
        return f"[{self.severity}] {self.path}: {self.message}"


@dataclass
class Task:
    """One step of a flow, possibly holding nested tasks."""

    id: Optional[str]
    type: Optional[str]
    properties: dict = field(default_factory=dict)
    children: list["Task"] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "Task":
        children = []
        for key, value in data.items():
            if key in NESTED_TASK_KEYS and isinstance(value, list):
                children.extend(cls.from_dict(item) for item in value if isinstance(item, dict))
            elif key == "cases" and isinstance(value, dict):
                for branch in value.values():
                    if isinstance(branch, list):
                        children.extend(cls.from_dict(item) for item in branch if isinstance(item, dict))
        return cls(id=data.get("id"), type=data.get("type"), properties=data, children=children)

    def own_properties(self) -> dict:
        """Properties excluding nested task lists."""
        return {
            key: value for key, value in self.properties.items()
            if key not in NESTED_TASK_KEYS and key != "cases"
        }

    def walk(self) -> Iterable["Task"]:
        yield self
        for child in self.children:
            yield from child.walk()


@dataclass
class FlowInput:
    """A declared flow input."""

    id: Optional[str]
    type: Optional[str]
    required: bool = True
    defaults: Any = None


@dataclass
class Trigger:
    """A declared flow trigger."""

    id: Optional[str]
    type: Optional[str]
    properties: dict = field(default_factory=dict)


@dataclass
class Flow:
    """A parsed flow definition; ``raw`` keeps the original document."""

    id: Optional[str]
    namespace: Optional[str]
    description: Optional[str] = None
    inputs: list[FlowInput] = field(default_factory=list)
    tasks: list[Task] = field(default_factory=list)
    triggers: list[Trigger] = field(default_factory=list)
    outputs: list[dict] = field(default_factory=list)
    errors: list[Task] = field(default_factory=list)
    finally_tasks: list[Task] = field(default_factory=list)
    raw: dict = field(default_factory=dict)
    path: Optional[Path] = None

    @property
    def key(self) -> tuple:
        return (self.namespace, self.id)

    @classmethod
    def from_dict(cls, data: dict, path: Optional[Path] = None) -> "Flow":
        def tasks_of(key: str) -> list[Task]:
            value = data.get(key)
            if not isinstance(value, list):
                return []
            return [Task.from_dict(item) for item in value if isinstance(item, dict)]

        inputs = [
            FlowInput(
                id=item.get("id", item.get("name")),
                type=item.get("type"),
                required=bool(item.get("required", True)),
                defaults=item.get("defaults"),
            )
            for item in _list_of_dicts(data.get("inputs"))
        ]
        triggers = [
            Trigger(id=item.get("id"), type=item.get("type"), properties=item)
            for item in _list_of_dicts(data.get("triggers"))
        ]
        return cls(
            id=data.get("id"),
            namespace=data.get("namespace"),
            description=data.get("description"),
            inputs=inputs,
            tasks=tasks_of("tasks"),
            triggers=triggers,
            outputs=_list_of_dicts(data.get("outputs")),
            errors=tasks_of("errors"),
            finally_tasks=tasks_of("finally"),
            raw=data,
            path=path,
        )


def _list_of_dicts(value: Any) -> list[dict]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


# =============================================================================
# Loading
# =============================================================================

def parse_flow(text: str, path: Optional[Path] = None) -> Flow:
    """
    Parse flow YAML text.

    Raises:
        FlowError: If the text is not YAML or not a mapping.
    """
    where = str(path) if path else "<string>"
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise FlowError(f"Invalid YAML in {where}: {e}")

    if not isinstance(data, dict):
        raise FlowError(f"Flow {where} must be a YAML mapping, got {type(data).__name__}")

    return Flow.from_dict(data, path=path)


def load_flow(path: Path) -> Flow:
    """Load a flow file. Raises FlowError when unreadable or invalid."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise FlowError(f"Cannot read flow file {path}: {e}")
    return parse_flow(text, path=path)


def discover_flows(root: Path) -> list[Path]:
    """Find flow files (*.yaml / *.yml) below root, sorted."""
    root = Path(root)
    if not root.exists():
        return []
    return sorted(
        path for path in root.rglob("*")
        if path.is_file() and path.suffix.lower() in FLOW_EXTENSIONS
    )


# =============================================================================
# Cron expressions
# =============================================================================

def _cron_value(token: str, minimum: int, maximum: int, names: Optional[list], offset: int) -> Optional[int]:
    if names and token.upper() in names:
        return names.index(token.upper()) + offset
    if not token.isdigit():
        return None
    value = int(token)
    if minimum <= value <= maximum:
        return value
    return None


def _validate_cron_field(text: str, spec: tuple) -> Optional[str]:
    """Return an error message for one cron field, or None when valid."""
    name, minimum, maximum, names, offset = spec

    for part in text.split(","):
        base, _, step = part.partition("/")
        if step and (not step.isdigit() or int(step) == 0):
            return f"invalid step '{step}' in {name} field"

        if base in ("*", "?"):
            if base == "?" and name not in ("day of month", "day of week"):
                return f"'?' is only allowed in day fields, not {name}"
            continue

        low, dash, high = base.partition("-")
        low_value = _cron_value(low, minimum, maximum, names, offset)
        if low_value is None:
            return f"'{low}' is out of range for {name} ({minimum}-{maximum})"
        if dash:
            high_value = _cron_value(high, minimum, maximum, names, offset)
            if high_value is None:
                return f"'{high}' is out of range for {name} ({minimum}-{maximum})"
            if high_value < low_value:
                return f"range {base} is reversed in {name} field"
    return None


def validate_cron(expression: Any, with_seconds: bool = False) -> Optional[str]:
    """
    Check a cron expression.

    Accepts five fields (six with seconds first when ``with_seconds``) or one
    of the @ nicknames.

    Returns:
        None when valid, otherwise a description of the problem.
    """
    if not isinstance(expression, str) or not expression.strip():
        return "cron expression must be a non-empty string"

    expression = expression.strip()
    if expression.startswith("@"):
        if expression.lower() in CRON_NICKNAMES:
            return None
        return f"unknown cron nickname '{expression}'"

    specs = ([CRON_SECONDS_FIELD] if with_seconds else []) + CRON_FIELDS
    fields = expression.split()
    if len(fields) != len(specs):
        return f"expected {len(specs)} fields, got {len(fields)}"

    for text, spec in zip(fields, specs):
        problem = _validate_cron_field(text, spec)
        if problem:
            return problem
    return None


# =============================================================================
# Template references
# =============================================================================

def _iter_strings(value: Any) -> Iterable[str]:
    if isinstance(value, str):
        yield value
    elif isinstance(value, dict):
        for item in value.values():
            yield from _iter_strings(item)
    elif isinstance(value, list):
        for item in value:
            yield from _iter_strings(item)


def find_references(value: Any, pattern: re.Pattern = OUTPUTS_REF) -> set[str]:
    """Collect names referenced inside {{ }} / {% %} expressions of a value."""
    names = set()
    for text in _iter_strings(value):
        for match in TEMPLATE_PATTERN.finditer(text):
            expression = match.group(1) if match.group(1) is not None else match.group(2)
            for ref in pattern.finditer(expression):
                names.add(ref.group(1) or ref.group(2))
    return names


# =============================================================================
# Schema validation
# =============================================================================

def task_order(flow: Flow) -> list[str]:
    """Task ids in execution order (depth first), main tasks only."""
    return [task.id for top in flow.tasks for task in top.walk() if task.id]


def _all_task_ids(flow: Flow) -> list[str]:
    groups = flow.tasks + flow.errors + flow.finally_tasks
    return [task.id for top in groups for task in top.walk() if isinstance(task.id, str)]


def _check_required(flow: Flow, issues: list[FlowIssue]) -> None:
    raw = flow.raw

    if not isinstance(flow.id, str) or not flow.id:
        issues.append(FlowIssue("id", "missing required field 'id'"))
    elif not FLOW_ID_PATTERN.match(flow.id):
        issues.append(FlowIssue("id", f"'{flow.id}' is not a valid flow id"))

    if not isinstance(flow.namespace, str) or not flow.namespace:
        issues.append(FlowIssue("namespace", "missing required field 'namespace'"))
    elif not NAMESPACE_PATTERN.match(flow.namespace):
        issues.append(FlowIssue(
            "namespace",
            f"'{flow.namespace}' is not a valid namespace (lowercase letters, digits, '.', '_', '-')",
        ))

    tasks = raw.get("tasks")
    if not isinstance(tasks, list) or not tasks:
        issues.append(FlowIssue("tasks", "flow must declare a non-empty 'tasks' list"))

    for key in sorted(set(raw) - FLOW_KEYS, key=str):
        issues.append(FlowIssue(str(key), f"unknown top-level property '{key}'", "warning"))

    if "description" in raw and not isinstance(raw["description"], str):
        issues.append(FlowIssue("description", "description must be a string"))

    if "disabled" in raw and not isinstance(raw["disabled"], bool):
        issues.append(FlowIssue("disabled", "disabled must be true or false"))


def _check_retry(retry: Any, where: str, issues: list[FlowIssue]) -> None:
    if not isinstance(retry, dict):
        issues.append(FlowIssue(where, "retry must be a mapping"))
        return

    retry_type = retry.get("type")
    if retry_type not in RETRY_TYPES:
        issues.append(FlowIssue(
            f"{where}.type",
            f"retry type must be one of {', '.join(sorted(RETRY_TYPES))}, got {retry_type!r}",
        ))

    attempts = retry.get("maxAttempt", retry.get("maxAttempts"))
    if attempts is None and "maxDuration" not in retry:
        issues.append(FlowIssue(where, "retry needs 'maxAttempt' or 'maxDuration'"))
    elif attempts is not None and (isinstance(attempts, bool) or not isinstance(attempts, int) or attempts < 1):
        issues.append(FlowIssue(f"{where}.maxAttempt", "maxAttempt must be a positive integer"))

    if retry_type in ("constant", "exponential", "random") and "interval" not in retry and "minInterval" not in retry:
        issues.append(FlowIssue(where, "retry needs an 'interval'"))


def _check_task_list(raw_tasks: Any, where: str, seen: dict, issues: list[FlowIssue]) -> None:
    """Validate task shapes recursively, recording ids into ``seen``."""
    if raw_tasks is None:
        return
    if not isinstance(raw_tasks, list):
        issues.append(FlowIssue(where, "must be a list of tasks"))
        return

    for index, raw in enumerate(raw_tasks):
        location = f"{where}[{index}]"
        if not isinstance(raw, dict):
            issues.append(FlowIssue(location, "task must be a mapping"))
            continue

        task_id = raw.get("id")
        if not isinstance(task_id, str) or not task_id:
            issues.append(FlowIssue(location, "task is missing required field 'id'"))
        else:
            location = f"{where}[{task_id}]"
            if not TASK_ID_PATTERN.match(task_id):
                issues.append(FlowIssue(location, f"'{task_id}' is not a valid task id"))
            if task_id in seen:
                issues.append(FlowIssue(location, f"duplicate task id '{task_id}' (first declared at {seen[task_id]})"))
            else:
                seen[task_id] = location

        task_type = raw.get("type")
        if not isinstance(task_type, str) or not task_type:
            issues.append(FlowIssue(location, "task is missing required field 'type'"))
        elif not PLUGIN_TYPE_PATTERN.match(task_type):
            issues.append(FlowIssue(location, f"'{task_type}' is not a fully qualified plugin type"))

        if "retry" in raw:
            _check_retry(raw["retry"], f"{location}.retry", issues)

        for key in NESTED_TASK_KEYS:
            nested = raw.get(key)
            if key == "defaults" and not isinstance(nested, list):
                continue
            _check_task_list(nested, f"{location}.{key}", seen, issues)
        if isinstance(raw.get("cases"), dict):
            for case, branch in raw["cases"].items():
                _check_task_list(branch, f"{location}.cases.{case}", seen, issues)


def _check_inputs(flow: Flow, issues: list[FlowIssue]) -> None:
    raw_inputs = flow.raw.get("inputs")
    if raw_inputs is None:
        return
    if not isinstance(raw_inputs, list):
        issues.append(FlowIssue("inputs", "inputs must be a list"))
        return

    seen = set()
    for index, raw in enumerate(raw_inputs):
        where = f"inputs[{index}]"
        if not isinstance(raw, dict):
            issues.append(FlowIssue(where, "input must be a mapping"))
            continue

        input_id = raw.get("id")
        if input_id is None and "name" in raw:
            input_id = raw["name"]
            issues.append(FlowIssue(where, "'name' is deprecated for inputs, use 'id'", "warning"))
        if not isinstance(input_id, str) or not input_id:
            issues.append(FlowIssue(where, "input is missing required field 'id'"))
        elif input_id in seen:
            issues.append(FlowIssue(where, f"duplicate input id '{input_id}'"))
        else:
            seen.add(input_id)

        input_type = raw.get("type")
        if input_type not in INPUT_TYPES:
            issues.append(FlowIssue(where, f"unknown input type {input_type!r}"))
        elif input_type in ("ENUM", "SELECT", "MULTISELECT"):
            values = raw.get("values")
            if not isinstance(values, list) or not values:
                issues.append(FlowIssue(where, f"{input_type} input needs a non-empty 'values' list"))
        elif input_type == "ARRAY" and not raw.get("itemType"):
            issues.append(FlowIssue(where, "ARRAY input needs an 'itemType'"))


def _check_triggers(flow: Flow, issues: list[FlowIssue]) -> None:
    raw_triggers = flow.raw.get("triggers")
    if raw_triggers is None:
        return
    if not isinstance(raw_triggers, list):
        issues.append(FlowIssue("triggers", "triggers must be a list"))
        return

    seen = set()
    for index, raw in enumerate(raw_triggers):
        where = f"triggers[{index}]"
        if not isinstance(raw, dict):
            issues.append(FlowIssue(where, "trigger must be a mapping"))
            continue

        trigger_id = raw.get("id")
        if not isinstance(trigger_id, str) or not trigger_id:
            issues.append(FlowIssue(where, "trigger is missing required field 'id'"))
        elif trigger_id in seen:
            issues.append(FlowIssue(where, f"duplicate trigger id '{trigger_id}'"))
        else:
            seen.add(trigger_id)
            where = f"triggers[{trigger_id}]"

        trigger_type = raw.get("type")
        if not isinstance(trigger_type, str) or not PLUGIN_TYPE_PATTERN.match(trigger_type):
            issues.append(FlowIssue(where, "trigger is missing a fully qualified 'type'"))
            continue

        if trigger_type in SCHEDULE_TRIGGER_TYPES:
            if "cron" not in raw:
                issues.append(FlowIssue(where, "Schedule trigger needs a 'cron' expression"))
                continue
            problem = validate_cron(raw["cron"], with_seconds=bool(raw.get("withSeconds", False)))
            if problem:
                issues.append(FlowIssue(f"{where}.cron", f"invalid cron {raw['cron']!r}: {problem}"))


def _check_outputs(flow: Flow, issues: list[FlowIssue]) -> None:
    raw_outputs = flow.raw.get("outputs")
    if raw_outputs is None:
        return
    if not isinstance(raw_outputs, list):
        issues.append(FlowIssue("outputs", "outputs must be a list"))
        return

    for index, raw in enumerate(raw_outputs):
        where = f"outputs[{index}]"
        if not isinstance(raw, dict):
            issues.append(FlowIssue(where, "output must be a mapping"))
            continue
        for key in ("id", "type", "value"):
            if key not in raw:
                issues.append(FlowIssue(where, f"output is missing required field '{key}'"))


def _check_task_references(flow: Flow, issues: list[FlowIssue]) -> None:
    """Each task may only read outputs of tasks declared before it."""
    all_ids = set(_all_task_ids(flow))
    input_ids = {item.id for item in flow.inputs if isinstance(item.id, str)}
    variables = flow.raw.get("variables")
    variable_ids = set(variables) if isinstance(variables, dict) else set()

    def check_value(value: Any, where: str, declared: set) -> None:
        for name in sorted(find_references(value, OUTPUTS_REF)):
            if name not in all_ids:
                issues.append(FlowIssue(where, f"references outputs of unknown task '{name}'"))
            elif name not in declared:
                issues.append(FlowIssue(where, f"references outputs of task '{name}' which runs later"))
        for name in sorted(find_references(value, INPUTS_REF)):
            if name not in input_ids:
                issues.append(FlowIssue(where, f"references undeclared input '{name}'"))
        for name in sorted(find_references(value, VARS_REF)):
            if name not in variable_ids:
                issues.append(FlowIssue(where, f"references undeclared variable '{name}'"))

    declared: set = set()

    def visit(task: Task) -> None:
        where = f"tasks[{task.id}]" if task.id else "tasks[?]"
        check_value(task.own_properties(), where, declared)
        if isinstance(task.id, str):
            declared.add(task.id)
        for child in task.children:
            visit(child)

    for task in flow.tasks:
        visit(task)

    # errors / finally run after the main sequence
    declared.update(all_ids)
    for task in flow.errors + flow.finally_tasks:
        visit(task)

    for index, output in enumerate(flow.outputs):
        check_value(output.get("value"), f"outputs[{output.get('id', index)}]", declared)


def _check_subflows(flow: Flow, known_flows: set, issues: list[FlowIssue]) -> None:
    for top in flow.tasks + flow.errors + flow.finally_tasks:
        for task in top.walk():
            if task.type not in SUBFLOW_TASK_TYPES:
                continue
            where = f"tasks[{task.id}]"
            namespace = task.properties.get("namespace")
            flow_id = task.properties.get("flowId")
            if not namespace or not flow_id:
                issues.append(FlowIssue(where, "subflow task needs 'namespace' and 'flowId'"))
                continue
            if not isinstance(namespace, str) or not isinstance(flow_id, str):
                issues.append(FlowIssue(where, "subflow 'namespace' and 'flowId' must be strings"))
                continue
            if "{{" in str(namespace) or "{{" in str(flow_id):
                continue
            if (namespace, flow_id) not in known_flows:
                issues.append(FlowIssue(where, f"subflow {namespace}.{flow_id} is not defined"))


def validate_flow(flow: Flow, known_flows: Optional[set] = None) -> list[FlowIssue]:
    """
    Check a flow against the Kestra flow schema.

    Args:
        flow: Parsed flow.
        known_flows: Optional set of (namespace, id) pairs; when given,
                     subflow tasks must point at one of them.

    Returns:
        Issues found, in document order per check. Empty when valid.
    """
    issues: list[FlowIssue] = []

    _check_required(flow, issues)
    _check_inputs(flow, issues)

    seen: dict = {}
    _check_task_list(flow.raw.get("tasks"), "tasks", seen, issues)
    _check_task_list(flow.raw.get("errors"), "errors", seen, issues)
    _check_task_list(flow.raw.get("finally"), "finally", seen, issues)

    if "retry" in flow.raw:
        _check_retry(flow.raw["retry"], "retry", issues)

    _check_triggers(flow, issues)
    _check_outputs(flow, issues)
    _check_task_references(flow, issues)

    if known_flows is not None:
        _check_subflows(flow, known_flows, issues)

    return issues


# =============================================================================
# Lint and whole-tree validation
# =============================================================================

def load_lint_config(config_text: Optional[str] = None, search_dirs: Iterable[Path] = ()) -> YamlLintConfig:
    """
    Build the yamllint configuration.

    Uses ``config_text`` when given, else the first .yamllint found in
    ``search_dirs``, else DEFAULT_LINT_CONFIG.
    """
    try:
        if config_text is not None:
            return YamlLintConfig(content=config_text)
        for directory in search_dirs:
            candidate = Path(directory) / ".yamllint"
            if candidate.is_file():
                logger.debug(f"Using lint config {candidate}")
                return YamlLintConfig(file=str(candidate))
        return YamlLintConfig(content=DEFAULT_LINT_CONFIG)
    except YamlLintConfigError as e:
        raise FlowError(f"Invalid yamllint configuration: {e}")


def lint_files(paths: Iterable[Path], config: Optional[YamlLintConfig] = None) -> dict[Path, list[FlowIssue]]:
    """Run yamllint over files. Returns only files with problems."""
    config = config or load_lint_config()
    results: dict[Path, list[FlowIssue]] = {}

    for path in paths:
        path = Path(path)
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            results[path] = [FlowIssue(str(path), f"cannot read file: {e}")]
            continue

        problems = [
            FlowIssue(
                path=f"line {problem.line}:{problem.column}",
                message=f"{problem.desc} ({problem.rule})" if problem.rule else problem.desc,
                severity="error" if problem.level == "error" else "warning",
            )
            for problem in linter.run(text, config, str(path))
        ]
        if problems:
            results[path] = problems

    return results


@dataclass
class TreeValidationResult:
    """Validation outcome for every flow under a directory."""

    files: list[Path] = field(default_factory=list)
    flows: list[Flow] = field(default_factory=list)
    issues: dict[Path, list[FlowIssue]] = field(default_factory=dict)

    @property
    def error_count(self) -> int:
        return sum(1 for found in self.issues.values() for issue in found if issue.is_error)

    @property
    def warning_count(self) -> int:
        return sum(1 for found in self.issues.values() for issue in found if not issue.is_error)

    @property
    def ok(self) -> bool:
        return self.error_count == 0

    def add(self, path: Path, found: list[FlowIssue]) -> None:
        if found:
            self.issues.setdefault(path, []).extend(found)


def _namespace_dir(root: Path, path: Path) -> Optional[str]:
    relative = path.relative_to(root)
    return relative.parts[0] if len(relative.parts) > 1 else None


def validate_tree(
    root: Path,
    paths: Optional[list[Path]] = None,
    lint_config: Optional[YamlLintConfig] = None,
) -> TreeValidationResult:
    """
    Lint and schema-check every flow below ``root``.

    Also checks that a flow's namespace matches the directory it sits in
    (equal, or a child namespace of it) and that namespace/id pairs are
    unique across the tree.
    """
    root = Path(root)
    result = TreeValidationResult(files=list(paths) if paths is not None else discover_flows(root))
    config = lint_config or load_lint_config(search_dirs=[root, root.parent, Path.cwd()])

    for path, problems in lint_files(result.files, config).items():
        result.add(path, problems)

    owners: dict = {}
    for path in result.files:
        try:
            flow = load_flow(path)
        except FlowError as e:
            result.add(path, [FlowIssue("file", str(e))])
            continue
        result.flows.append(flow)

        directory = _namespace_dir(root, path) if path.is_relative_to(root) else None
        if directory and isinstance(flow.namespace, str):
            if flow.namespace != directory and not flow.namespace.startswith(directory + "."):
                result.add(path, [FlowIssue(
                    "namespace",
                    f"namespace '{flow.namespace}' does not match directory '{directory}'",
                )])

        # malformed ids are already reported by validate_flow
        if not (isinstance(flow.namespace, str) and isinstance(flow.id, str)):
            continue
        if flow.key in owners:
            result.add(path, [FlowIssue(
                "id",
                f"flow {flow.namespace}.{flow.id} is also defined in {owners[flow.key]}",
            )])
        else:
            owners[flow.key] = path

    known = set(owners)
    for flow in result.flows:
        result.add(flow.path, validate_flow(flow, known_flows=known))

    logger.info(
        f"Validated {len(result.files)} flow files: "
        f"{result.error_count} errors, {result.warning_count} warnings"
    )
    return result
