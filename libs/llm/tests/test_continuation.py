import asyncio

from libs.core.models import NormalizedResponse
from libs.llm.continuation import continue_if_truncated


def _scripted(responses):
    prompts = []
    queue = list(responses)

    async def complete(prompt: str) -> NormalizedResponse:
        prompts.append(prompt)
        content, finish_reason = queue.pop(0)
        return NormalizedResponse(content=content, finish_reason=finish_reason)

    return complete, prompts


def test_single_turn_when_not_truncated():
    complete, prompts = _scripted([("All done.", "stop")])
    result = asyncio.run(
        continue_if_truncated(
            prompt="start",
            complete=complete,
            continuation_prompt=lambda so_far: f"continue:{so_far}",
            max_turns=3,
        )
    )
    assert result.content == "All done."
    assert not result.continued
    assert result.turns == 1
    assert prompts == ["start"]


def test_truncated_output_is_continued_and_joined():
    complete, prompts = _scripted([("Part one", "length"), ("part two.", "stop")])
    turns = []
    result = asyncio.run(
        continue_if_truncated(
            prompt="start",
            complete=complete,
            continuation_prompt=lambda so_far: f"continue:{so_far}",
            max_turns=3,
            on_turn=turns.append,
        )
    )
    assert result.content == "Part one\n\npart two."
    assert result.continued
    assert result.turns == 2
    assert prompts[1] == "continue:Part one"
    assert [turn["turn"] for turn in turns] == [1, 2]
    assert turns[1]["aggregated"] == result.content


def test_stops_at_max_turns():
    complete, _ = _scripted([("a", "length"), ("b", "length"), ("c", "length")])
    result = asyncio.run(
        continue_if_truncated(
            prompt="start",
            complete=complete,
            continuation_prompt=lambda so_far: so_far,
            max_turns=2,
        )
    )
    assert result.content == "a\n\nb"
    assert result.turns == 2


def test_async_turn_callback_is_awaited():
    complete, _ = _scripted([("only", "stop")])
    seen = []

    async def on_turn(event):
        seen.append(event["delta"])

    asyncio.run(
        continue_if_truncated(
            prompt="p",
            complete=complete,
            continuation_prompt=lambda so_far: so_far,
            max_turns=1,
            on_turn=on_turn,
        )
    )
    assert seen == ["only"]
