"""Tests for prompt templates."""

import json

import pytest

from mongrate.core.job import Job, JobConfig
from mongrate.orchestrator.prompts import PromptError, PromptSet, load_prompts


def _job(tmp_path, job_config, plan=None):
    return Job(id="job-1", name="shop", config=job_config, work_dir=tmp_path, plan=plan)


class TestBundledPrompts:
    """Tests for the prompts shipped with the package."""

    def test_bundled_prompts_load(self):
        prompts = load_prompts()

        assert prompts.system
        assert "```json" in prompts.plan
        assert "{plan}" in prompts.execute
        assert "{url}" in prompts.postgres_section
        assert "{url}" in prompts.mongo_section

    def test_plan_prompt_has_both_connections(self, tmp_path, job_config):
        prompt = load_prompts().build_plan_prompt(_job(tmp_path, job_config))

        assert job_config.postgres_url in prompt
        assert job_config.mongo_url in prompt
        assert "{url}" not in prompt

    def test_plan_prompt_without_postgres(self, tmp_path, job_config):
        job_config.postgres_url = None

        prompt = load_prompts().build_plan_prompt(_job(tmp_path, job_config))

        assert job_config.mongo_url in prompt
        assert "postgres://" not in prompt

    def test_execute_prompt_embeds_plan(self, tmp_path, job_config):
        plan = {"summary": "2 tables", "tables": [{"name": "users"}]}

        prompt = load_prompts().build_execute_prompt(_job(tmp_path, job_config, plan=plan))

        assert json.dumps(plan, indent=2) in prompt
        assert "{plan}" not in prompt

    def test_execute_prompt_requires_plan(self, tmp_path, job_config):
        with pytest.raises(PromptError, match="No plan found"):
            load_prompts().build_execute_prompt(_job(tmp_path, job_config))


class TestCustomPrompts:
    """Tests for loading user-supplied prompt files."""

    def test_load_custom_file(self, tmp_path):
        path = tmp_path / "prompts.yaml"
        path.write_text("system: Be brief.\nplan: Plan it.\nexecute: 'Do it: {plan}'\n")

        prompts = load_prompts(path)

        assert prompts.system == "Be brief."
        assert prompts.mongo_section == ""
        job = Job(id="job-1", name="x", config=JobConfig(repo_url="r", mongo_url="m"), work_dir=tmp_path)
        assert prompts.build_plan_prompt(job) == "Plan it."

    def test_missing_template(self, tmp_path):
        path = tmp_path / "prompts.yaml"
        path.write_text("system: Be brief.\nplan: Plan it.\n")

        with pytest.raises(PromptError, match="execute"):
            load_prompts(path)

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "prompts.yaml"
        path.write_text("system: [unclosed\n")

        with pytest.raises(PromptError):
            load_prompts(path)

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "prompts.yaml"
        path.write_text("- just\n- a list\n")

        with pytest.raises(PromptError, match="mapping"):
            load_prompts(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(PromptError):
            load_prompts(tmp_path / "absent.yaml")

    def test_connection_sections_fill_url(self, tmp_path, job_config):
        prompts = PromptSet(
            system="s",
            plan="p",
            execute="e {plan}",
            postgres_section="PG: {url}",
            mongo_section="MONGO: {url}",
        )

        sections = prompts.connection_sections(_job(tmp_path, job_config))

        assert "PG: postgres://app:secret@db/shop" in sections
        assert "MONGO: mongodb://localhost:27017/shop" in sections
