"""Pipeline orchestrator module.

Provides state machine coordination for the segment processing pipeline with:
- State machine transitions and constants
- Batch-by-batch execution with partial-failure isolation
- PipelineResult accounting at segment and batch granularity
- Progress callback interface for CLI integration
"""

from vidseq.orchestrator.pipeline import PipelineOrchestrator, run_pipeline

__all__ = ["PipelineOrchestrator", "run_pipeline"]
