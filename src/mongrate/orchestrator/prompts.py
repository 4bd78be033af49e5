"""Prompt templates for agent turns.

Templates live in ``prompts.yaml`` beside this module and may be replaced by
a user file with the same keys.
"""

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from ..core.job import Job

DEFAULT_PROMPTS_FILE = Path(__file__).parent / "prompts.yaml"

REQUIRED_KEYS = ("system", "plan", "execute")


class PromptError(Exception):
    """Error loading or rendering prompts."""

    pass


@dataclass
class PromptSet:
    """Loaded prompt templates."""

    system: str
    plan: str
    execute: str
    postgres_section: str = ""
    mongo_section: str = ""

    def connection_sections(self, job: Job) -> str:
        sections = []
        if job.config.postgres_url and self.postgres_section:
            sections.append(self.postgres_section.replace("{url}", job.config.postgres_url))
        if job.config.mongo_url and self.mongo_section:
            sections.append(self.mongo_section.replace("{url}", job.config.mongo_url))
        if not sections:
            return ""
        return "\n\n" + "\n".join(section.rstrip() + "\n" for section in sections)

    def build_plan_prompt(self, job: Job) -> str:
        return self.plan.rstrip() + self.connection_sections(job)

    def build_execute_prompt(self, job: Job) -> str:
        """Execution prompt with the job's plan embedded.

        Raises:
            PromptError: If the job has no plan.
        """
        if job.plan is None:
            raise PromptError("No plan found. Run planning agent first.")
        plan_text = json.dumps(job.plan, indent=2)
        return self.execute.replace("{plan}", plan_text).rstrip() + self.connection_sections(job)


def load_prompts(path: Optional[Path] = None) -> PromptSet:
    """Load prompt templates from YAML.

    Args:
        path: YAML file to load. Defaults to the bundled prompts.

    Returns:
        PromptSet instance.

    Raises:
        PromptError: If the file cannot be read or lacks a template.
    """
    path = path or DEFAULT_PROMPTS_FILE
    try:
        with open(path, "r", encoding="utf-8") as f:
            data: Any = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise PromptError(f"Failed to load prompts from {path}: {e}") from e

    if not isinstance(data, dict):
        raise PromptError(f"{path}: expected a mapping of prompt templates")

    missing = [key for key in REQUIRED_KEYS if not data.get(key)]
    if missing:
        raise PromptError(f"{path}: missing prompt templates: {', '.join(missing)}")

    connections: Dict[str, str] = data.get("connections") or {}
    return PromptSet(
        system=data["system"].strip(),
        plan=data["plan"],
        execute=data["execute"],
        postgres_section=connections.get("postgres", ""),
        mongo_section=connections.get("mongo", ""),
    )
