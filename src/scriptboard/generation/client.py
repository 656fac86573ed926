from __future__ import annotations

import json
import os
import re
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

import requests

from scriptboard.errors import Cancelled, GenerationError, ValidationError
from scriptboard.text.words import split_sentences


class TextGenerator(Protocol):
    def generate(
        self,
        prompt: str,
        *,
        structured: bool = True,
        temperature: float = 0.7,
        max_output_tokens: Optional[int] = None,
        system_prompt: Optional[str] = None,
        cancel: Optional[threading.Event] = None,
    ) -> str:
        ...


@dataclass
class GeneratorConfig:
    backend: str = "openai_compatible"  # openai_compatible|transformers|dry_run
    model: str = "gpt-4o"
    base_url: str = "https://api.openai.com/v1"
    api_key_env: str = "OPENAI_API_KEY"
    timeout_sec: int = 120
    max_output_tokens: int = 16384

    @classmethod
    def from_dict(cls, cfg: Dict[str, Any]) -> "GeneratorConfig":
        return cls(
            backend=str(cfg.get("backend", cls.backend)),
            model=str(cfg.get("model", cls.model)),
            base_url=str(cfg.get("base_url", cls.base_url)),
            api_key_env=str(cfg.get("api_key_env", cls.api_key_env) or ""),
            timeout_sec=int(cfg.get("timeout_sec", cls.timeout_sec)),
            max_output_tokens=int(cfg.get("max_output_tokens", cls.max_output_tokens)),
        )


def _check_cancel(cancel: Optional[threading.Event]) -> None:
    if cancel is not None and cancel.is_set():
        raise Cancelled("generation cancelled before request")


def _message_text(choice: Any) -> str:
    message = choice.get("message") if isinstance(choice, dict) else None
    if not isinstance(message, dict):
        raise GenerationError("chat completions choice has no message")
    content = message.get("content")
    if content is None:
        return ""
    if isinstance(content, list):
        # content parts: [{"type": "text", "text": "..."}]
        return "".join(
            part.get("text") or "" for part in content if isinstance(part, dict)
        )
    if not isinstance(content, str):
        raise GenerationError(
            f"chat completions content is {type(content).__name__}, expected text"
        )
    return content


class OpenAICompatibleGenerator:
    """
    Chat-completions client for OpenAI and OpenAI-compatible servers
    (LM Studio, vLLM, llama.cpp server). ``api_key_env`` may be empty for
    local servers that take no key.
    """

    def __init__(self, config: GeneratorConfig, session: Optional[requests.Session] = None):
        self.config = config
        self._session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.config.api_key_env:
            api_key = os.environ.get(self.config.api_key_env, "")
            if not api_key:
                raise GenerationError(
                    f"{self.config.api_key_env} is not configured in environment variables"
                )
            headers["Authorization"] = f"Bearer {api_key}"
        return headers

    def generate(
        self,
        prompt: str,
        *,
        structured: bool = True,
        temperature: float = 0.7,
        max_output_tokens: Optional[int] = None,
        system_prompt: Optional[str] = None,
        cancel: Optional[threading.Event] = None,
    ) -> str:
        _check_cancel(cancel)
        messages: List[Dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})
        payload: Dict[str, Any] = {
            "model": self.config.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_output_tokens or self.config.max_output_tokens,
            "stream": False,
        }
        if structured:
            payload["response_format"] = {"type": "json_object"}

        url = f"{self.config.base_url.rstrip('/')}/chat/completions"
        try:
            resp = self._session.post(
                url, headers=self._headers(), json=payload, timeout=self.config.timeout_sec
            )
        except requests.RequestException as exc:
            raise GenerationError(f"request to {url} failed: {exc}") from exc
        if resp.status_code != 200:
            raise GenerationError(f"chat completions error: {resp.status_code} {resp.text[:300]}")
        try:
            data = resp.json()
        except ValueError as exc:
            raise GenerationError("chat completions returned a non-JSON body") from exc
        choices = data.get("choices") if isinstance(data, dict) else None
        if not isinstance(choices, list) or not choices:
            raise GenerationError("chat completions returned no choices")
        return _message_text(choices[0])


class TransformersGenerator:
    """Local Hugging Face text-generation pipeline. Call ``load()`` first."""

    def __init__(self, config: GeneratorConfig):
        self.config = config
        self._pipe = None

    def load(self) -> None:
        try:
            from transformers import pipeline
        except ImportError as exc:
            raise ImportError(
                "transformers is required for the 'transformers' generation backend."
            ) from exc
        self._pipe = pipeline("text-generation", model=self.config.model)

    def generate(
        self,
        prompt: str,
        *,
        structured: bool = True,
        temperature: float = 0.7,
        max_output_tokens: Optional[int] = None,
        system_prompt: Optional[str] = None,
        cancel: Optional[threading.Event] = None,
    ) -> str:
        _check_cancel(cancel)
        if self._pipe is None:
            raise GenerationError("local model is not loaded. Call load() before generate().")
        text = f"{system_prompt}\n\n{prompt}" if system_prompt else prompt
        if structured:
            text += "\n\nReturn JSON only."
        gen_kwargs: Dict[str, Any] = {
            "max_new_tokens": max_output_tokens or self.config.max_output_tokens,
            "do_sample": temperature > 0,
            "return_full_text": False,
        }
        if temperature > 0:
            gen_kwargs["temperature"] = temperature
        try:
            return self._pipe(text, **gen_kwargs)[0]["generated_text"]
        except Exception as exc:
            raise GenerationError(f"local generation failed: {exc}") from exc


class DryRunGenerator:
    """
    Offline backend that answers from the request itself: every requested
    unit gets an equal slice of the segment's words. Lets a dry run exercise
    chunking, numbering and assembly without a model.
    """

    REQUEST_RE = re.compile(r"EXACTLY (\d+) (scene|module)s starting at (?:scene|module) (\d+)")
    NARRATIVE_RE = re.compile(r"into (\d+) scenes")

    def __init__(self) -> None:
        self.calls = 0

    def generate(
        self,
        prompt: str,
        *,
        structured: bool = True,
        temperature: float = 0.0,
        max_output_tokens: Optional[int] = None,
        system_prompt: Optional[str] = None,
        cancel: Optional[threading.Event] = None,
    ) -> str:
        _check_cancel(cancel)
        self.calls += 1
        instructions = f"{system_prompt or ''}\n{prompt}"
        body = prompt.split("\n\n", 1)[-1]

        request = self.REQUEST_RE.search(instructions)
        if request:
            count, kind, start = int(request.group(1)), request.group(2), int(request.group(3))
            slices = self._slice_words(body, count)
            if kind == "scene":
                return json.dumps(self._scenes(body, slices, start))
            return json.dumps(self._modules(slices, start))

        narrative = self.NARRATIVE_RE.search(instructions)
        if narrative:
            return json.dumps(self._narrative(body, int(narrative.group(1))))
        return body

    @staticmethod
    def _slice_words(text: str, count: int) -> List[str]:
        words = text.split()
        if not words or count <= 0:
            return []
        count = min(count, len(words))
        n = len(words)
        return [" ".join(words[i * n // count : (i + 1) * n // count]) for i in range(count)]

    @staticmethod
    def _scenes(body: str, slices: List[str], start: int) -> Dict[str, Any]:
        sentences = split_sentences(body)
        return {
            "characters": [
                {"id": "char_narrator", "name": "Narrator", "description": "stick figure narrator"}
            ],
            "scenes": [
                {
                    "scene_number": start + i,
                    "script_snippet": s,
                    "visual_prompt": f"Single focal illustration on a white background: {s}",
                    "layout_type": "character",
                    "characters": ["char_narrator"],
                }
                for i, s in enumerate(slices)
            ],
            "story_arc": sentences[0][:160] if sentences else "",
            "key_themes": [],
            "style_guide": "minimal stick figures, pure white background",
        }

    @staticmethod
    def _modules(slices: List[str], start: int) -> Dict[str, Any]:
        return {
            "modules": [
                {
                    "module_number": start + i,
                    "principle_name": f"Principle {start + i}",
                    "level_1_principle": s,
                    "level_2_strategy": s,
                    "level_3_actionable_steps": [s],
                    "level_4_reflection_question": f"How does this apply to you: {s}?",
                }
                for i, s in enumerate(slices)
            ],
        }

    def _narrative(self, body: str, total_scenes: int) -> Dict[str, Any]:
        sentences = split_sentences(body)
        return {
            "story_arc": sentences[0][:160] if sentences else "",
            "key_themes": [],
            "emotional_progression": [],
            "style_guide": "minimal stick figures, pure white background",
            "scene_briefs": [
                {"scene_number": i + 1, "focal_element": s, "layout_type": "object"}
                for i, s in enumerate(self._slice_words(body, total_scenes))
            ],
        }


def build_generator(config: GeneratorConfig, dry_run: bool = False) -> TextGenerator:
    backend = "dry_run" if dry_run else config.backend
    if backend == "dry_run":
        return DryRunGenerator()
    if backend == "openai_compatible":
        return OpenAICompatibleGenerator(config)
    if backend == "transformers":
        generator = TransformersGenerator(config)
        generator.load()
        return generator
    raise ValidationError(
        f"unknown generation backend {backend!r} (expected openai_compatible, transformers or dry_run)"
    )
