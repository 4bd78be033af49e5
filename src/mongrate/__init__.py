"""mongrate - Agent-driven PostgreSQL to MongoDB migrations.

This package coordinates long-running planning and execution agents that work
on a cloned repository, and relays their output to clients in real time.

Main modules:
    - cli: Command-line interface (mongrate command)
    - core: Paths, configuration, job records and repository cloning
    - agent: Agent handles and the per-job session manager
    - stream: Event broadcaster and SSE framing
    - orchestrator: Turn orchestration and the job status machine
    - viewer: HTTP API and live event stream
"""

__version__ = "0.1.0"
