"""Turn orchestration and the job status machine."""

from .extract import extract_structured_payload, map_execution_result
from .orchestrator import AgentOrchestrator, OrchestratorResult
from .prompts import PromptError, PromptSet, load_prompts

__all__ = [
    "AgentOrchestrator",
    "OrchestratorResult",
    "PromptError",
    "PromptSet",
    "extract_structured_payload",
    "load_prompts",
    "map_execution_result",
]
