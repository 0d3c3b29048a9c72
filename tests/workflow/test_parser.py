"""Tests for template loading and the template registry."""

import json

import pytest
from pydantic import ValidationError

from procflow.workflow.parser import TemplateParser, TemplateRegistry

MINIMAL_YAML = """
name: minimal
stateMachine:
  fsl: "idle 'start' -> done;"
  final: [done]
"""


class TestTemplateParser:
    def test_parse_interview_file(self, interview_template):
        assert interview_template.name == "interview-scheduling"
        assert interview_template.initial_state == "idle"
        assert "completed" in interview_template.final_states
        assert interview_template.get_event_type("EMAIL_RECEIVED") is not None

    def test_parse_string_yaml(self):
        template = TemplateParser.parse_string(MINIMAL_YAML)
        assert template.definition.states == ["idle", "done"]

    def test_parse_string_json(self):
        content = json.dumps(
            {"name": "minimal", "stateMachine": {"fsl": "idle 'start' -> done;"}}
        )
        template = TemplateParser.parse_string(content, format="json")
        assert template.name == "minimal"

    def test_parse_json_file(self, tmp_path):
        path = tmp_path / "template.json"
        path.write_text(
            json.dumps({"name": "from-json", "stateMachine": {"fsl": "a 'x' -> b;"}})
        )
        assert TemplateParser.parse_file(path).name == "from-json"

    def test_parse_dict(self, approval_template_dict):
        assert TemplateParser.parse_dict(approval_template_dict).name == "approval"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            TemplateParser.parse_file(tmp_path / "nope.yaml")

    def test_unsupported_suffix(self, tmp_path):
        path = tmp_path / "template.toml"
        path.write_text("name = 'x'")
        with pytest.raises(ValueError, match="Unsupported file format"):
            TemplateParser.parse_file(path)

    def test_unsupported_format(self):
        with pytest.raises(ValueError, match="Unsupported format"):
            TemplateParser.parse_string("{}", format="xml")

    def test_empty_content(self):
        with pytest.raises(ValueError, match="Empty"):
            TemplateParser.parse_string("")

    def test_invalid_template(self):
        with pytest.raises(ValidationError):
            TemplateParser.parse_string("name: broken\n")

    def test_validate_file(self, interview_template_path, tmp_path):
        ok, message = TemplateParser.validate_file(interview_template_path)
        assert ok
        assert "interview-scheduling" in message

        bad = tmp_path / "bad.yaml"
        bad.write_text("name: bad\nstateMachine:\n  fsl: \"idle start -> x\"\n")
        ok, message = TemplateParser.validate_file(bad)
        assert not ok
        assert "Invalid state machine" in message

    def test_validate_missing_file(self, tmp_path):
        ok, message = TemplateParser.validate_file(tmp_path / "missing.yaml")
        assert not ok
        assert "not found" in message


class TestTemplateRegistry:
    def test_register_assigns_id(self, approval_template, t0):
        registry = TemplateRegistry()
        registered = registry.register(approval_template, created_at=t0)

        assert registered.template_id
        assert registered.template_id in registry
        assert registry.get(registered.template_id) is registered
        assert len(registry) == 1

    def test_id_length(self, approval_template, t0):
        registry = TemplateRegistry(id_length=20)
        assert len(registry.register(approval_template, created_at=t0).template_id) == 20

    def test_same_template_registers_once(self, approval_template, t0):
        registry = TemplateRegistry()
        first = registry.register(approval_template, created_at=t0)
        second = registry.register(first)
        assert first is second
        assert len(registry) == 1

    def test_equal_content_reuses_id(self, approval_template, at):
        registry = TemplateRegistry()
        first = registry.register(approval_template, created_at=at(0))
        second = registry.register(approval_template.model_copy(), created_at=at(5))
        assert second is first
        assert len(registry) == 1

    def test_id_collision_between_different_templates(self, approval_template, t0):
        registry = TemplateRegistry()
        registered = registry.register(approval_template, created_at=t0)
        impostor = approval_template.model_copy(
            update={"template_id": registered.template_id, "description": "other"}
        )
        with pytest.raises(ValueError, match="already registered"):
            registry.register(impostor)

    def test_versions_and_latest(self, approval_template, at):
        registry = TemplateRegistry()
        v1 = registry.register(approval_template, created_at=at(0))
        v2 = registry.register(approval_template.model_copy(update={"version": "2.0"}), created_at=at(1))

        assert v1.template_id != v2.template_id
        assert registry.versions("approval") == [v1, v2]
        assert registry.latest("approval") is v2
        assert registry.latest("unknown") is None
        assert registry.list_templates() == [v1.template_id, v2.template_id]

    def test_register_from_file(self, interview_template_path):
        registry = TemplateRegistry()
        template = registry.register_from_file(interview_template_path)
        assert registry.get(template.template_id) is template
