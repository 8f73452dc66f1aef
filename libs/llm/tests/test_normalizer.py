from libs.llm import normalizer


def test_openai_message_content():
    response = normalizer.normalize_openai_response(
        {
            "choices": [{"message": {"role": "assistant", "content": "Hello"}, "finish_reason": "stop"}],
            "usage": {"prompt_tokens": 3, "completion_tokens": 5, "total_tokens": 8},
        }
    )
    assert response.content == "Hello"
    assert response.finish_reason == "stop"
    assert response.usage.total_tokens == 8


def test_openai_reasoning_content_when_content_empty():
    response = normalizer.normalize_openai_response(
        {"choices": [{"message": {"content": "", "reasoning_content": "thinking out loud"}}]}
    )
    assert response.content == "thinking out loud"


def test_openai_delta_and_text_fallbacks():
    delta = normalizer.normalize_openai_response({"choices": [{"delta": {"content": "partial"}}]})
    legacy = normalizer.normalize_openai_response({"choices": [{"text": "legacy"}]})
    assert delta.content == "partial"
    assert legacy.content == "legacy"


def test_openai_content_blocks_are_joined():
    response = normalizer.normalize_openai_response(
        {
            "choices": [
                {
                    "message": {
                        "content": [
                            {"type": "text", "text": "a"},
                            {"type": "image", "url": "x"},
                            {"type": "text", "text": "b"},
                        ]
                    }
                }
            ]
        }
    )
    assert response.content == "ab"


def test_openai_first_string_field_of_message():
    response = normalizer.normalize_openai_response(
        {"choices": [{"message": {"role": "assistant", "refusal": "cannot help"}}]}
    )
    assert response.content == "cannot help"


def test_malformed_payloads_never_raise():
    for raw in (None, "nope", {}, {"choices": []}, {"choices": ["x"]}, {"usage": "bad"}):
        response = normalizer.normalize_openai_response(raw)
        assert response.content == ""
        assert response.usage.total_tokens == 0


def test_anthropic_text_blocks_and_usage():
    response = normalizer.normalize_anthropic_response(
        {
            "content": [
                {"type": "text", "text": "Hello "},
                {"type": "tool_use", "name": "x"},
                {"type": "text", "text": "world"},
            ],
            "usage": {"input_tokens": 10, "output_tokens": 4},
            "stop_reason": "max_tokens",
        }
    )
    assert response.content == "Hello world"
    assert response.usage.prompt_tokens == 10
    assert response.usage.completion_tokens == 4
    assert response.usage.total_tokens == 14
    assert response.finish_reason == "length"


def test_anthropic_usage_falls_back_to_openai_names():
    response = normalizer.normalize_anthropic_response(
        {"content": [], "usage": {"prompt_tokens": 2, "completion_tokens": 3}}
    )
    assert response.usage.total_tokens == 5


def test_normalize_any_detects_shape():
    anthropic = normalizer.normalize_any_response({"content": [{"type": "text", "text": "A"}]})
    openai = normalizer.normalize_any_response({"choices": [{"message": {"content": "O"}}]})
    assert anthropic.content == "A"
    assert openai.content == "O"
    assert not normalizer.is_anthropic_payload({"content": [], "choices": []})


def test_usage_summary_keys():
    response = normalizer.normalize_openai_response(
        {"choices": [], "usage": {"prompt_tokens": 1, "completion_tokens": 2, "total_tokens": 3}}
    )
    assert normalizer.usage_summary(response) == {"input": 1, "output": 2, "total": 3}
