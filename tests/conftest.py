import pytest
from langchain_core.language_models.fake_chat_models import FakeListChatModel

from fakes import FakeAgentBuilder, FakeRoutingModel


@pytest.fixture
def chat_model():
    """Chat model for workers; replies come from the fake agent, not from here."""
    return FakeListChatModel(responses=["unused"])


@pytest.fixture
def agent_builder():
    return FakeAgentBuilder("done")


@pytest.fixture
def routing_model():
    return FakeRoutingModel()
