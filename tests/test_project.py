from __future__ import annotations

from pathlib import Path

import allure
import pytest

from agent_relay.coordination.models import AgentKind
from agent_relay.project import ProjectConfigError, load_project_config, parse_project_config

pytestmark = [
    allure.epic("Configuration"),
    allure.feature("Project Descriptor"),
]

PROJECT_YAML = """\
project:
  name: shop
  description: a demo shop app
  min_sample_size: 5
  defaults:
    test_command: npm test
    max_cycles: 4
agents:
  - name: role-screens
    kind: screen
    depends_on: [role-hooks, role-services]
  - name: role-hooks
    kind: hook
    depends_on: role-services
    prompt_file: prompts/hooks.md
  - name: role-services
    kind: service
    cycle_command: coder --print {prompt}
    target_pass_rate: 90
    deliverable: api-ready
"""


def _agents(*agents: dict) -> dict:
    return {"project": {"name": "shop"}, "agents": list(agents)}


def test_load_project_config_applies_defaults_and_orders_agents(tmp_path: Path) -> None:
    path = tmp_path / "agent_relay.yml"
    path.write_text(PROJECT_YAML, "utf-8")
    (tmp_path / "prompts").mkdir()
    (tmp_path / "prompts" / "hooks.md").write_text("Only edit src/hooks.", "utf-8")

    config = load_project_config(path)

    assert config.name == "shop"
    assert config.min_sample_size == 5
    assert config.topological_order() == ["role-services", "role-hooks", "role-screens"]
    services = config.agent("role-services")
    assert services.kind == AgentKind.SERVICE
    assert services.test_command == "npm test"
    assert services.max_cycles == 4
    assert services.target_pass_rate == 90.0
    assert config.dependency_resources("role-screens") == {
        "role-hooks": "complete",
        "role-services": "api-ready",
    }
    assert config.dependents("role-services") == ["role-hooks", "role-screens"]
    hooks = config.agent("role-hooks")
    assert config.load_instructions(hooks) == "Only edit src/hooks."
    assert config.load_instructions(services) == ""


def test_topological_order_breaks_ties_alphabetically() -> None:
    config = parse_project_config(
        _agents({"name": "zeta"}, {"name": "alpha"}, {"name": "mid", "depends_on": ["zeta"]}),
    )

    assert config.topological_order() == ["alpha", "zeta", "mid"]


@pytest.mark.parametrize(
    ("data", "message"),
    [
        ([], "must be a mapping"),
        ({"agents": [{"name": "a"}]}, "project.name is required"),
        ({"project": {"name": "shop"}, "agents": []}, "non-empty list"),
        (_agents({"name": "a"}, {"name": "a"}), "Duplicate agent name"),
        (_agents({"name": "a", "depends_on": ["a"]}), "depends on itself"),
        (_agents({"name": "a", "depends_on": ["ghost"]}), "depends on unknown agents: ghost"),
        (
            _agents({"name": "a", "depends_on": ["b"]}, {"name": "b", "depends_on": ["a"]}),
            "Dependency cycle detected among: a, b",
        ),
        (_agents({"name": "a", "max_cycles": 0}), "max_cycles must be a positive integer"),
        (_agents({"name": "a", "target_pass_rate": 120}), "within 0..100"),
        (_agents({"name": "a", "kind": "robot"}), "unknown kind"),
        (_agents({"name": "a", "colour": "red"}), "unsupported keys: colour"),
        (_agents({"name": "../a"}), "Invalid agent name"),
        (
            {"project": {"name": "shop", "min_sample_size": 0}, "agents": [{"name": "a"}]},
            "min_sample_size must be >= 1",
        ),
    ],
)
def test_invalid_descriptors_are_rejected(data, message: str) -> None:
    with pytest.raises(ProjectConfigError, match=message):
        parse_project_config(data)


def test_unknown_agent_lookup_lists_known_agents() -> None:
    config = parse_project_config(_agents({"name": "a"}))

    with pytest.raises(ProjectConfigError, match="Known agents: a"):
        config.agent("b")


def test_invalid_yaml_is_reported(tmp_path: Path) -> None:
    path = tmp_path / "broken.yml"
    path.write_text("project: [unclosed", "utf-8")

    with pytest.raises(ProjectConfigError, match="Invalid YAML"):
        load_project_config(path)


def test_missing_file_is_reported(tmp_path: Path) -> None:
    with pytest.raises(ProjectConfigError, match="Cannot read project config"):
        load_project_config(tmp_path / "missing.yml")
