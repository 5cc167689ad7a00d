"""Long-term memory collaborators consumed by the pipeline."""

from narratum.memory.coherence import CoherenceChecker, PatternCoherenceChecker

__all__ = ["CoherenceChecker", "PatternCoherenceChecker"]
