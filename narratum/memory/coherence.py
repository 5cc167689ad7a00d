"""Fact-level contradiction checking over a canonical state."""

import logging
import re
from abc import ABC, abstractmethod
from itertools import combinations
from typing import List, Optional

from narratum.schemas.memory import (
    CanonicalState,
    CoherenceSeverity,
    CoherenceViolation,
    CoherenceViolationType,
    Fact,
)


logger = logging.getLogger(__name__)


DEAD_PATTERN = re.compile(r"\b(dead|died|deceased|death)\b", re.IGNORECASE)
ALIVE_PATTERN = re.compile(r"\b(alive|living|living still)\b", re.IGNORECASE)
DESTROYED_PATTERN = re.compile(r"\b(destroyed|in ruins|leveled)\b", re.IGNORECASE)
INTACT_PATTERN = re.compile(r"\b(intact|standing|safe)\b", re.IGNORECASE)


class CoherenceChecker(ABC):
    """Detects contradictions between accepted facts."""

    @abstractmethod
    def validate_state(self, state: CanonicalState) -> List[CoherenceViolation]:
        pass

    @abstractmethod
    def validate_transition(self, previous: CanonicalState, new: CanonicalState) -> List[CoherenceViolation]:
        pass

    def contradictions(self, state: CanonicalState) -> List[CoherenceViolation]:
        """Statement contradictions found in the state."""
        return [
            v for v in self.validate_state(state)
            if v.violation_type == CoherenceViolationType.STATEMENT_CONTRADICTION
        ]


class PatternCoherenceChecker(CoherenceChecker):
    """Keyword-based checker

    Two facts contradict when they share an entity and one asserts the
    opposite of the other: dead vs alive, destroyed vs intact, or
    "X is Y" vs "X is not Y".
    """

    def validate_state(self, state: CanonicalState) -> List[CoherenceViolation]:
        return self.validate_facts(list(state.facts.values()))

    def validate_facts(self, facts: List[Fact]) -> List[CoherenceViolation]:
        violations: List[CoherenceViolation] = []

        for fact in facts:
            violation = self.validate_fact(fact)
            if violation is not None:
                violations.append(violation)

        for first, second in combinations(facts, 2):
            if self.contains_contradiction(first, second):
                violations.append(CoherenceViolation.create(
                    violation_type=CoherenceViolationType.STATEMENT_CONTRADICTION,
                    severity=CoherenceSeverity.ERROR,
                    description=f"Contradiction: '{first.content}' vs '{second.content}'",
                    involved_fact_ids=[first.id, second.id],
                    memory_level=first.memory_level
                ))

        if violations:
            logger.debug(f"Found {len(violations)} coherence violations among {len(facts)} facts")
        return violations

    def validate_fact(self, fact: Fact) -> Optional[CoherenceViolation]:
        errors = fact.get_validation_errors()
        if not errors:
            return None
        return CoherenceViolation.create(
            violation_type=CoherenceViolationType.ENTITY_INCONSISTENCY,
            severity=CoherenceSeverity.ERROR,
            description="; ".join(errors),
            involved_fact_ids=[fact.id],
            memory_level=fact.memory_level
        )

    def validate_transition(self, previous: CanonicalState, new: CanonicalState) -> List[CoherenceViolation]:
        """Report entities that were dead before and are alive now."""
        violations: List[CoherenceViolation] = []
        previous_facts = list(previous.facts.values())

        for new_fact in new.facts.values():
            earlier = next(
                (f for f in previous_facts if f.entity_references == new_fact.entity_references),
                None
            )
            if earlier is None:
                continue
            if DEAD_PATTERN.search(earlier.content) and ALIVE_PATTERN.search(new_fact.content):
                violations.append(CoherenceViolation.create(
                    violation_type=CoherenceViolationType.SEQUENCE_VIOLATION,
                    severity=CoherenceSeverity.ERROR,
                    description=(
                        f"Impossible resurrection. Before: '{earlier.content}', "
                        f"after: '{new_fact.content}'"
                    ),
                    involved_fact_ids=[earlier.id, new_fact.id],
                    memory_level=new.memory_level
                ))

        return violations

    def contains_contradiction(self, first: Fact, second: Fact) -> bool:
        if first.id == second.id:
            return False
        if not _shares_entity(first, second):
            return False

        a, b = first.content, second.content
        dead_vs_alive = _opposed(a, b, DEAD_PATTERN, ALIVE_PATTERN)
        destroyed_vs_intact = _opposed(a, b, DESTROYED_PATTERN, INTACT_PATTERN)
        return dead_vs_alive or destroyed_vs_intact or _opposite_assertion(a, b)


def _shares_entity(first: Fact, second: Fact) -> bool:
    left = {ref.casefold() for ref in first.entity_references}
    right = {ref.casefold() for ref in second.entity_references}
    return bool(left & right)


def _opposed(a: str, b: str, pattern: re.Pattern, opposite: re.Pattern) -> bool:
    return bool(
        (pattern.search(a) and opposite.search(b))
        or (opposite.search(a) and pattern.search(b))
    )


def _opposite_assertion(a: str, b: str) -> bool:
    """Detect 'X is Y' against 'X is not Y'."""
    first = _split_assertion(a.casefold())
    second = _split_assertion(b.casefold())
    if first is None or second is None:
        return False
    (subject_a, negated_a, predicate_a), (subject_b, negated_b, predicate_b) = first, second
    return subject_a == subject_b and predicate_a == predicate_b and negated_a != negated_b


def _split_assertion(content: str):
    if " is " not in content:
        return None
    subject, predicate = content.split(" is ", 1)
    predicate = predicate.strip().rstrip(".!")
    negated = predicate.startswith("not ")
    if negated:
        predicate = predicate[len("not "):].strip()
    return subject.strip(), negated, predicate
