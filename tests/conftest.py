"""Shared fixtures: a small story world, intents and mock back ends."""

import pytest

from narratum.llm.mock import MockLlmClient, MockLlmConfig
from narratum.schemas.context import PipelineContext
from narratum.schemas.intent import NarrativeIntent
from narratum.schemas.state import CharacterState, LocationState, StoryState, VitalStatus


@pytest.fixture
def tavern():
    return LocationState(name="The Rusty Anchor", description="A smoky harbour tavern.")


@pytest.fixture
def alice(tavern):
    return CharacterState(
        name="Alice",
        current_location_id=tavern.location_id,
        known_facts=frozenset({"The letter was stolen"})
    )


@pytest.fixture
def bob(tavern):
    return CharacterState(name="Bob", vital_status=VitalStatus.DEAD, current_location_id=tavern.location_id)


@pytest.fixture
def story_state(alice, bob, tavern):
    return (
        StoryState.create("Harbour Town")
        .with_location(tavern)
        .with_character(alice)
        .with_character(bob)
        .with_event("Bob was found dead on the docks")
    )


@pytest.fixture
def dead_bob_state(bob):
    """Story whose only character is dead."""
    return StoryState.create("Harbour Town").with_character(bob)


@pytest.fixture
def continue_intent():
    return NarrativeIntent.continue_narrative("Alice searches the tavern")


@pytest.fixture
def context(story_state, continue_intent, alice, tavern):
    return PipelineContext(
        story_state=story_state,
        intent=continue_intent,
        active_character_ids=(alice.character_id,),
        current_location_id=tavern.location_id
    )


@pytest.fixture
def mock_client():
    return MockLlmClient(MockLlmConfig.for_testing())
