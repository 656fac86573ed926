import json
from typing import Any, Dict, List, Optional, Sequence


SENTENCE_12 = "The quick brown fox jumps over the lazy dog near the river."


def scenes_payload(
    numbers: Sequence[int],
    characters: Optional[List[Dict[str, str]]] = None,
    **metadata: Any,
) -> str:
    payload: Dict[str, Any] = {
        "characters": characters or [],
        "scenes": [
            {
                "scene_number": n,
                "script_snippet": f"snippet {n}",
                "visual_prompt": f"prompt {n}",
                "layout_type": "object",
                "characters": [],
            }
            for n in numbers
        ],
    }
    payload.update(metadata)
    return json.dumps(payload)


class ScriptedGenerator:
    """
    Replays one scripted answer per call. An answer may be a string, an
    exception instance (raised), or a callable taking the call dict.
    """

    def __init__(self, answers: Sequence[Any]):
        self.answers = list(answers)
        self.calls: List[Dict[str, Any]] = []

    def generate(
        self,
        prompt,
        *,
        structured=True,
        temperature=0.7,
        max_output_tokens=None,
        system_prompt=None,
        cancel=None,
    ):
        call = {
            "prompt": prompt,
            "system_prompt": system_prompt or "",
            "structured": structured,
            "temperature": temperature,
            "max_output_tokens": max_output_tokens,
        }
        self.calls.append(call)
        if not self.answers:
            raise AssertionError("ScriptedGenerator ran out of answers")
        answer = self.answers.pop(0)
        if isinstance(answer, BaseException):
            raise answer
        if callable(answer):
            return answer(call)
        return answer
