"""
Loads and renders prompt templates from YAML files using Jinja2.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from jinja2 import Template

logger = logging.getLogger(__name__)


class PromptLoader:
    """
    Loads and renders prompt templates.

    Templates live in <root>/<group>/<name>.yaml and must define
    `system_prompt` and `user_prompt`.
    """

    def __init__(self, root_path: Optional[Path] = None):
        self.root_path = root_path or Path(__file__).parent

    def get_prompt(self, group: str, name: str, variables: Dict[str, Any]) -> Dict[str, str]:
        """
        Load a YAML prompt and render it.

        Args:
            group: 'scout' or 'enrichment'
            name: The filename without extension (e.g., 'recipe')
            variables: Data to render into the template
        """
        file_path = self.root_path / group / f"{name}.yaml"

        if not file_path.exists():
            logger.error("Prompt template not found: %s", file_path)
            raise FileNotFoundError(f"Missing prompt: {file_path}")

        with open(file_path, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f)

        try:
            return {
                "system": Template(config["system_prompt"]).render(**variables),
                "user": Template(config["user_prompt"]).render(**variables),
            }
        except KeyError as e:
            logger.error("YAML missing required key in %s: %s", file_path, e)
            raise
