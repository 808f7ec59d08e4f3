"""Project descriptor: the static agent graph loaded once from YAML."""

from __future__ import annotations

import heapq
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from agent_relay.coordination.layout import InvalidNameError, validate_name
from agent_relay.coordination.models import AgentDescriptor, AgentKind

_AGENT_KEYS = {
    "name",
    "kind",
    "depends_on",
    "cycle_command",
    "test_command",
    "max_cycles",
    "target_pass_rate",
    "deliverable",
    "prompt_file",
    "description",
}
_DEFAULT_KEYS = _AGENT_KEYS - {"name", "depends_on", "description", "prompt_file"}


class ProjectConfigError(ValueError):
    """Project descriptor is unreadable or describes an invalid agent graph."""


@dataclass(frozen=True, slots=True)
class ProjectConfig:
    """Validated project descriptor; dependencies are guaranteed acyclic."""

    name: str
    agents: tuple[AgentDescriptor, ...]
    description: str = ""
    min_sample_size: int = 1
    base_dir: Path = Path()

    def agent(self, name: str) -> AgentDescriptor:
        for descriptor in self.agents:
            if descriptor.name == name:
                return descriptor
        known = ", ".join(descriptor.name for descriptor in self.agents) or "none"
        raise ProjectConfigError(f"Unknown agent {name!r}. Known agents: {known}.")

    def dependency_resources(self, name: str) -> dict[str, str]:
        """Map each dependency of ``name`` to the deliverable it publishes."""

        descriptor = self.agent(name)
        return {
            dependency: self.agent(dependency).deliverable
            for dependency in sorted(descriptor.dependencies)
        }

    def dependents(self, name: str) -> list[str]:
        return sorted(
            descriptor.name for descriptor in self.agents if name in descriptor.dependencies
        )

    def topological_order(self) -> list[str]:
        return _topological_order(self.agents)

    def prompt_path(self, descriptor: AgentDescriptor) -> Path | None:
        if not descriptor.prompt_file:
            return None
        path = Path(descriptor.prompt_file)
        return path if path.is_absolute() else self.base_dir / path

    def load_instructions(self, descriptor: AgentDescriptor) -> str:
        path = self.prompt_path(descriptor)
        if path is None:
            return ""
        try:
            return path.read_text("utf-8")
        except OSError as error:
            raise ProjectConfigError(
                f"Prompt file for agent {descriptor.name!r} is not readable: {path}",
            ) from error


def load_project_config(path: Path) -> ProjectConfig:
    """Read and validate the YAML project descriptor at ``path``."""

    try:
        raw = path.read_text("utf-8")
    except OSError as error:
        raise ProjectConfigError(f"Cannot read project config {path}: {error}") from error
    try:
        data = yaml.safe_load(raw) or {}
    except yaml.YAMLError as error:
        raise ProjectConfigError(f"Invalid YAML in {path}: {error}") from error
    return parse_project_config(data, base_dir=path.parent)


def parse_project_config(data: Any, *, base_dir: Path = Path()) -> ProjectConfig:  # noqa: C901
    if not isinstance(data, dict):
        raise ProjectConfigError("Project config must be a mapping.")
    project = data.get("project") or {}
    if not isinstance(project, dict):
        raise ProjectConfigError("'project' must be a mapping.")

    name = project.get("name")
    if not isinstance(name, str):
        raise ProjectConfigError("project.name is required.")
    _checked_name(name, kind="project")

    min_sample_size = project.get("min_sample_size", 1)
    if isinstance(min_sample_size, bool) or not isinstance(min_sample_size, int):
        raise ProjectConfigError("project.min_sample_size must be an integer.")
    if min_sample_size < 1:
        raise ProjectConfigError("project.min_sample_size must be >= 1.")

    defaults = project.get("defaults") or {}
    if not isinstance(defaults, dict):
        raise ProjectConfigError("project.defaults must be a mapping.")
    unknown_defaults = set(defaults) - _DEFAULT_KEYS
    if unknown_defaults:
        raise ProjectConfigError(
            f"Unsupported keys in project.defaults: {', '.join(sorted(unknown_defaults))}",
        )

    raw_agents = data.get("agents")
    if not isinstance(raw_agents, list) or not raw_agents:
        raise ProjectConfigError("'agents' must be a non-empty list.")

    agents: list[AgentDescriptor] = []
    seen: set[str] = set()
    for index, raw_agent in enumerate(raw_agents):
        if not isinstance(raw_agent, dict):
            raise ProjectConfigError(f"agents[{index}] must be a mapping.")
        descriptor = _parse_agent({**defaults, **raw_agent}, index=index)
        if descriptor.name in seen:
            raise ProjectConfigError(f"Duplicate agent name: {descriptor.name!r}")
        seen.add(descriptor.name)
        agents.append(descriptor)

    for descriptor in agents:
        if descriptor.name in descriptor.dependencies:
            raise ProjectConfigError(f"Agent {descriptor.name!r} depends on itself.")
        unknown = sorted(descriptor.dependencies - seen)
        if unknown:
            raise ProjectConfigError(
                f"Agent {descriptor.name!r} depends on unknown agents: {', '.join(unknown)}",
            )

    config = ProjectConfig(
        name=name,
        description=str(project.get("description") or ""),
        min_sample_size=min_sample_size,
        agents=tuple(agents),
        base_dir=base_dir,
    )
    config.topological_order()
    return config


def _parse_agent(raw: dict[str, Any], *, index: int) -> AgentDescriptor:
    unknown_keys = set(raw) - _AGENT_KEYS
    if unknown_keys:
        raise ProjectConfigError(
            f"agents[{index}] has unsupported keys: {', '.join(sorted(unknown_keys))}",
        )
    name = raw.get("name")
    if not isinstance(name, str):
        raise ProjectConfigError(f"agents[{index}].name is required.")
    _checked_name(name, kind="agent")

    kind_raw = raw.get("kind", AgentKind.OTHER.value)
    try:
        kind = AgentKind(kind_raw)
    except ValueError as error:
        allowed = ", ".join(kind.value for kind in AgentKind)
        raise ProjectConfigError(
            f"Agent {name!r} has unknown kind {kind_raw!r}. Allowed: {allowed}",
        ) from error

    depends_on = raw.get("depends_on") or []
    if isinstance(depends_on, str):
        depends_on = [depends_on]
    if not isinstance(depends_on, list) or not all(isinstance(item, str) for item in depends_on):
        raise ProjectConfigError(f"Agent {name!r}: depends_on must be a list of agent names.")

    max_cycles = raw.get("max_cycles", 5)
    if isinstance(max_cycles, bool) or not isinstance(max_cycles, int) or max_cycles < 1:
        raise ProjectConfigError(f"Agent {name!r}: max_cycles must be a positive integer.")

    target = raw.get("target_pass_rate", 85.0)
    if isinstance(target, bool) or not isinstance(target, int | float) or not 0 <= target <= 100:
        raise ProjectConfigError(f"Agent {name!r}: target_pass_rate must be within 0..100.")

    deliverable = str(raw.get("deliverable") or "complete")
    _checked_name(deliverable, kind="deliverable")

    prompt_file = raw.get("prompt_file")
    if prompt_file is not None and not isinstance(prompt_file, str):
        raise ProjectConfigError(f"Agent {name!r}: prompt_file must be a string path.")

    return AgentDescriptor(
        name=name,
        kind=kind,
        dependencies=frozenset(depends_on),
        cycle_command=str(raw.get("cycle_command") or ""),
        test_command=str(raw.get("test_command") or ""),
        max_cycles=max_cycles,
        target_pass_rate=float(target),
        deliverable=deliverable,
        prompt_file=prompt_file,
        description=str(raw.get("description") or ""),
    )


def _checked_name(value: str, *, kind: str) -> str:
    try:
        return validate_name(value, kind=kind)
    except InvalidNameError as error:
        raise ProjectConfigError(str(error)) from error


def _topological_order(agents: tuple[AgentDescriptor, ...]) -> list[str]:
    pending = {descriptor.name: set(descriptor.dependencies) for descriptor in agents}
    ready = [name for name, deps in pending.items() if not deps]
    heapq.heapify(ready)
    order: list[str] = []
    while ready:
        name = heapq.heappop(ready)
        order.append(name)
        for other, deps in pending.items():
            if name in deps:
                deps.discard(name)
                if not deps:
                    heapq.heappush(ready, other)
    if len(order) != len(pending):
        cyclic = sorted(name for name, deps in pending.items() if deps)
        raise ProjectConfigError(f"Dependency cycle detected among: {', '.join(cyclic)}")
    return order
