"""Prompt templates for the memory engine, stored as YAML."""

from pathlib import Path
from typing import Optional
import json
import yaml

DEFAULT_TEMPLATES = Path(__file__).resolve().parent.parent / "prompts" / "memory.yaml"


class PromptLibrary:
    """
    Loads the review, conflict-analysis and generation prompt templates.

    Templates use ``str.format`` fields; literal braces in the YAML are doubled.
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = path or DEFAULT_TEMPLATES
        with open(self.path, encoding="utf-8") as f:
            self._templates = yaml.safe_load(f)

    def get_template(self, name: str) -> str:
        try:
            return self._templates[name]["template"]
        except KeyError:
            raise KeyError(f"No prompt template named '{name}' in {self.path}") from None

    def memory_review(self, memories: list[dict], context: str) -> str:
        return self.get_template("memory_review").format(
            memories=json.dumps(memories, ensure_ascii=False, indent=2),
            context=context,
        )

    def conflict_analysis(self, memories: list[dict]) -> str:
        return self.get_template("conflict_analysis").format(
            memories=json.dumps(memories, ensure_ascii=False, indent=2),
        )

    def memory_generation(self, conversation: str) -> str:
        return self.get_template("memory_generation").format(
            conversation=conversation,
        )
