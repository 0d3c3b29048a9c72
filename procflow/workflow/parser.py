"""
Workflow template parser.

Loads and validates workflow templates from YAML or JSON files.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from procflow.errors import TemplateError
from procflow.identifiers import DEFAULT_ID_LENGTH
from procflow.workflow.schema import WorkflowTemplate

logger = logging.getLogger(__name__)


class TemplateParser:
    """
    Parse and validate workflow templates.

    Supports:
    - YAML files (.yaml, .yml)
    - JSON files (.json)
    - Direct string parsing

    Example:
        ```python
        # From file
        template = TemplateParser.parse_file("interview.yaml")

        # From string
        yaml_content = '''
        name: my-workflow
        stateMachine:
          fsl: "idle 'start' -> done;"
        '''
        template = TemplateParser.parse_string(yaml_content)
        ```
    """

    @staticmethod
    def parse_file(path: Union[str, Path]) -> WorkflowTemplate:
        """
        Parse template from file.

        Args:
            path: Path to template file (YAML or JSON)

        Returns:
            Validated WorkflowTemplate

        Raises:
            FileNotFoundError: If file doesn't exist
            ValueError: If file format is unsupported
            ValidationError: If the template is invalid
            TemplateError: If the state machine or a condition is malformed
        """
        path = Path(path)

        if not path.exists():
            raise FileNotFoundError(f"Template file not found: {path}")

        content = path.read_text(encoding="utf-8")

        if path.suffix in (".yaml", ".yml"):
            return TemplateParser.parse_string(content, format="yaml")
        elif path.suffix == ".json":
            return TemplateParser.parse_string(content, format="json")
        else:
            raise ValueError(f"Unsupported file format: {path.suffix}")

    @staticmethod
    def parse_string(content: str, format: str = "yaml") -> WorkflowTemplate:
        """
        Parse template from string content.

        Args:
            content: YAML or JSON string
            format: "yaml" or "json"
        """
        if format == "yaml":
            data = yaml.safe_load(content)
        elif format == "json":
            data = json.loads(content)
        else:
            raise ValueError(f"Unsupported format: {format}")

        if data is None:
            raise ValueError("Empty workflow template")

        return WorkflowTemplate.model_validate(data)

    @staticmethod
    def parse_dict(data: dict) -> WorkflowTemplate:
        """Parse template from dictionary."""
        return WorkflowTemplate.model_validate(data)

    @staticmethod
    def validate_file(path: Union[str, Path]) -> tuple[bool, str]:
        """
        Validate a template file.

        Returns:
            Tuple of (is_valid, message)
        """
        try:
            template = TemplateParser.parse_file(path)
            return True, f"Valid template: {template.name} v{template.version}"
        except FileNotFoundError as e:
            return False, f"File not found: {e}"
        except TemplateError as e:
            return False, f"Invalid state machine or rule: {e}"
        except ValueError as e:
            return False, f"Invalid format: {e}"
        except Exception as e:
            return False, f"Validation error: {e}"


def _content_of(template: WorkflowTemplate) -> Dict[str, Any]:
    data = template.to_dict()
    data.pop("templateId", None)
    return data


class TemplateRegistry:
    """
    Store and retrieve workflow templates.

    Templates are keyed by content-addressed id. An id is never overwritten:
    editing a template means registering a new one, which gets a new id.
    """

    def __init__(self, id_length: int = DEFAULT_ID_LENGTH):
        self._templates: Dict[str, WorkflowTemplate] = {}
        self._id_length = id_length

    def register(
        self,
        template: WorkflowTemplate,
        created_at: Optional[Union[datetime, int, float]] = None,
    ) -> WorkflowTemplate:
        """
        Register a template, assigning an id if it has none.

        A template without an id whose content matches one already registered
        resolves to that registration instead of minting a new id.

        Returns:
            The registered template (with its id)

        Raises:
            ValueError: If a different template already holds the id
        """
        if not template.template_id:
            for existing in self._templates.values():
                if _content_of(existing) == _content_of(template):
                    return existing

        template = template.with_id(created_at, length=self._id_length)
        existing = self._templates.get(template.template_id)
        if existing is not None:
            if existing is template or existing == template:
                return existing
            raise ValueError(f"Template id already registered: {template.template_id}")

        self._templates[template.template_id] = template
        logger.info(f"Registered template: {template.name} ({template.template_id})")
        return template

    def register_from_file(self, path: Union[str, Path]) -> WorkflowTemplate:
        return self.register(TemplateParser.parse_file(path))

    def get(self, template_id: str) -> Optional[WorkflowTemplate]:
        return self._templates.get(template_id)

    def versions(self, name: str) -> List[WorkflowTemplate]:
        """All registered templates with a given name, in registration order."""
        return [t for t in self._templates.values() if t.name == name]

    def latest(self, name: str) -> Optional[WorkflowTemplate]:
        versions = self.versions(name)
        return versions[-1] if versions else None

    def list_templates(self) -> List[str]:
        return list(self._templates.keys())

    def __contains__(self, template_id: str) -> bool:
        return template_id in self._templates

    def __len__(self) -> int:
        return len(self._templates)
