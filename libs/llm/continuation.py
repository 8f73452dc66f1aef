from __future__ import annotations

import inspect
import time
from typing import Any, Awaitable, Callable, Dict, Optional

from pydantic import BaseModel

from libs.core.models import NormalizedResponse

TRUNCATED_FINISH_REASON = "length"


class ContinuationResult(BaseModel):
    content: str
    continued: bool
    turns: int


async def continue_if_truncated(
    *,
    prompt: str,
    complete: Callable[[str], Awaitable[NormalizedResponse]],
    continuation_prompt: Callable[[str], str],
    max_turns: int,
    deadline: Optional[float] = None,
    on_turn: Optional[Callable[[Dict[str, Any]], Any]] = None,
) -> ContinuationResult:
    content = ""
    current_prompt = prompt
    continued = False

    for index in range(max_turns):
        if deadline is not None and time.time() > deadline:
            return ContinuationResult(content=content, continued=continued, turns=index)

        response = await complete(current_prompt)
        delta = response.content
        content = f"{content}\n\n{delta}" if content else delta

        if on_turn is not None:
            outcome = on_turn(
                {
                    "turn": index + 1,
                    "delta": delta,
                    "aggregated": content,
                    "finish_reason": response.finish_reason,
                }
            )
            if inspect.isawaitable(outcome):
                await outcome

        if response.finish_reason != TRUNCATED_FINISH_REASON:
            return ContinuationResult(content=content, continued=continued, turns=index + 1)

        continued = True
        current_prompt = continuation_prompt(content)

    return ContinuationResult(content=content, continued=continued, turns=max_turns)
