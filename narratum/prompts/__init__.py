"""Prompt templates and the template registry."""

from narratum.prompts.registry import PromptRegistry
from narratum.prompts.templates import (
    CharacterPromptTemplate,
    ConsistencyPromptTemplate,
    NarratorPromptTemplate,
    PromptTemplate,
    SummaryPromptTemplate,
)

__all__ = [
    "PromptTemplate",
    "NarratorPromptTemplate",
    "CharacterPromptTemplate",
    "SummaryPromptTemplate",
    "ConsistencyPromptTemplate",
    "PromptRegistry",
]
