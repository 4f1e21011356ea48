from types import SimpleNamespace

import pytest
from langchain_core.messages import HumanMessage, SystemMessage

from knowledge_rag.generation.llm_interface import BaseLLM, OpenAIChatLikeLLM, create_llm


class DummyChatModel:
    """Records messages and returns a canned response."""

    def __init__(self, response):
        self.response = response
        self.messages = None

    def invoke(self, messages, **kwargs):
        self.messages = messages
        return self.response


class DummyLLM(BaseLLM):
    def __init__(self, response):
        self.chat = DummyChatModel(response)

    @classmethod
    def from_config_dict(cls, config, callback_manager=None):
        return cls(SimpleNamespace(content=""))

    def get_llm(self):
        return self.chat


def test_generate_answer_sends_system_and_user_messages():
    response = SimpleNamespace(content="  The answer.  ", usage_metadata={"total_tokens": 123})
    llm = DummyLLM(response)

    answer = llm.generate_answer("system text", "Question: q\n\nAnswer:")

    assert answer.answer_text == "The answer."
    assert answer.tokens_used == 123
    assert isinstance(llm.chat.messages[0], SystemMessage)
    assert isinstance(llm.chat.messages[1], HumanMessage)
    assert llm.chat.messages[0].content == "system text"


def test_tokens_fall_back_to_response_metadata():
    response = SimpleNamespace(
        content="ok",
        usage_metadata=None,
        response_metadata={"token_usage": {"total_tokens": 7}},
    )

    assert DummyLLM(response).generate_answer("s", "u").tokens_used == 7
    assert DummyLLM(SimpleNamespace(content="ok")).generate_answer("s", "u").tokens_used == 0


def test_generate_joins_content_parts():
    response = SimpleNamespace(content=[{"type": "text", "text": "a"}, {"type": "text", "text": "b"}])

    assert DummyLLM(response).generate("prompt") == "ab"


def test_create_llm_builds_chat_openai_wrapper():
    llm = create_llm(
        {
            "type": "openai_chat",
            "model_name": "gpt-4o-mini",
            "api_base": "http://localhost:8000/v1",
            "api_key": "test",
            "model_kwargs": {"temperature": 0.1},
        }
    )

    assert isinstance(llm, OpenAIChatLikeLLM)
    assert llm.model_name == "gpt-4o-mini"
    assert llm.model_kwargs == {"temperature": 0.1}


@pytest.mark.parametrize(
    "config, error",
    [
        ({"model_name": "m"}, ValueError),
        ({"type": "anthropic_native", "model_name": "m"}, ValueError),
        ({"type": "openai_chat"}, ValueError),
        ("openai_chat", TypeError),
    ],
)
def test_create_llm_rejects_bad_config(config, error):
    with pytest.raises(error):
        create_llm(config)
