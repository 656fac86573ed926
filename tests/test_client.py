import threading

import pytest
import requests

from scriptboard.errors import Cancelled, GenerationError, ValidationError
from scriptboard.generation.client import (
    DryRunGenerator,
    GeneratorConfig,
    OpenAICompatibleGenerator,
    build_generator,
)
from scriptboard.planning.prompts import ModuleStrategy, SceneStrategy
from scriptboard.planning.schemas import ModuleResponse, SceneResponse, parse_structured_response
from scriptboard.utils.types import Chunk


class FakeResponse:
    def __init__(self, status_code=200, body=None, text=""):
        self.status_code = status_code
        self._body = body
        self.text = text

    def json(self):
        if self._body is None:
            raise ValueError("no JSON")
        return self._body


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.posts = []

    def post(self, url, **kwargs):
        self.posts.append((url, kwargs))
        if self.error is not None:
            raise self.error
        return self.response


def _ok(content):
    return FakeResponse(body={"choices": [{"message": {"content": content}}]})


def _client(session, **overrides):
    cfg = GeneratorConfig(base_url="http://llm.local/v1/", api_key_env="SB_TEST_KEY", **overrides)
    return OpenAICompatibleGenerator(cfg, session=session)


def test_chat_completion_request(monkeypatch):
    monkeypatch.setenv("SB_TEST_KEY", "secret")
    session = FakeSession(_ok('{"scenes": []}'))
    out = _client(session, model="tiny", timeout_sec=9).generate(
        "user text", system_prompt="be brief", temperature=0.2
    )

    assert out == '{"scenes": []}'
    url, kwargs = session.posts[0]
    assert url == "http://llm.local/v1/chat/completions"
    assert kwargs["headers"]["Authorization"] == "Bearer secret"
    assert kwargs["timeout"] == 9
    payload = kwargs["json"]
    assert payload["model"] == "tiny"
    assert payload["messages"] == [
        {"role": "system", "content": "be brief"},
        {"role": "user", "content": "user text"},
    ]
    assert payload["temperature"] == 0.2
    assert payload["max_tokens"] == 16384
    assert payload["response_format"] == {"type": "json_object"}


def test_unstructured_request_has_no_response_format(monkeypatch):
    monkeypatch.setenv("SB_TEST_KEY", "secret")
    session = FakeSession(_ok("plain"))
    _client(session).generate("hi", structured=False, max_output_tokens=64)
    payload = session.posts[0][1]["json"]
    assert "response_format" not in payload
    assert payload["max_tokens"] == 64
    assert [m["role"] for m in payload["messages"]] == ["user"]


def test_missing_api_key(monkeypatch):
    monkeypatch.delenv("SB_TEST_KEY", raising=False)
    session = FakeSession(_ok("{}"))
    with pytest.raises(GenerationError, match="SB_TEST_KEY"):
        _client(session).generate("hi")
    assert session.posts == []


def test_keyless_local_server():
    session = FakeSession(_ok("{}"))
    cfg = GeneratorConfig.from_dict({"base_url": "http://localhost:1234/v1", "api_key_env": ""})
    OpenAICompatibleGenerator(cfg, session=session).generate("hi")
    assert "Authorization" not in session.posts[0][1]["headers"]


@pytest.mark.parametrize(
    "session",
    [
        FakeSession(FakeResponse(status_code=429, text="rate limited")),
        FakeSession(FakeResponse(body=None)),
        FakeSession(FakeResponse(body={"choices": []})),
        FakeSession(FakeResponse(body={"choices": {"0": "text"}})),
        FakeSession(FakeResponse(body={"choices": ["plain text"]})),
        FakeSession(FakeResponse(body={"choices": [{"message": "plain text"}]})),
        FakeSession(FakeResponse(body={"choices": [{"message": {"content": 42}}]})),
        FakeSession(error=requests.ConnectionError("refused")),
    ],
)
def test_backend_failures_raise_generation_error(monkeypatch, session):
    monkeypatch.setenv("SB_TEST_KEY", "secret")
    with pytest.raises(GenerationError):
        _client(session).generate("hi")


def test_cancel_skips_request(monkeypatch):
    monkeypatch.setenv("SB_TEST_KEY", "secret")
    cancel = threading.Event()
    cancel.set()
    session = FakeSession(_ok("{}"))
    with pytest.raises(Cancelled):
        _client(session).generate("hi", cancel=cancel)
    assert session.posts == []


def test_build_generator():
    assert isinstance(build_generator(GeneratorConfig(), dry_run=True), DryRunGenerator)
    assert isinstance(build_generator(GeneratorConfig(backend="dry_run")), DryRunGenerator)
    assert isinstance(build_generator(GeneratorConfig()), OpenAICompatibleGenerator)
    with pytest.raises(ValidationError):
        build_generator(GeneratorConfig(backend="carrier_pigeon"))


def test_dry_run_answers_scene_requests():
    chunk = Chunk(
        index=1,
        text="One two three. Four five six seven. Eight nine.",
        expected_unit_count=3,
        start_sequence_number=5,
        is_first=True,
    )
    request = SceneStrategy().build_request(chunk, None)
    raw = DryRunGenerator().generate(request.prompt, system_prompt=request.system_prompt)
    parsed = parse_structured_response(raw, SceneResponse)
    assert [s.scene_number for s in parsed.scenes] == [5, 6, 7]
    assert " ".join(s.script_snippet for s in parsed.scenes) == chunk.text
    assert parsed.story_arc == "One two three."


def test_dry_run_answers_module_requests():
    chunk = Chunk(
        index=0, text="Save first. Spend later.", expected_unit_count=2,
        start_sequence_number=1, is_first=True,
    )
    request = ModuleStrategy().build_request(chunk, None)
    gen = DryRunGenerator()
    parsed = parse_structured_response(
        gen.generate(request.prompt, system_prompt=request.system_prompt), ModuleResponse
    )
    assert [m.module_number for m in parsed.modules] == [1, 2]
    assert gen.calls == 1


def test_content_parts_are_joined(monkeypatch):
    monkeypatch.setenv("SB_TEST_KEY", "secret")
    body = {
        "choices": [
            {
                "message": {
                    "content": [
                        {"type": "text", "text": '{"scenes": '},
                        {"type": "text", "text": "[]}"},
                    ]
                }
            }
        ]
    }
    out = _client(FakeSession(FakeResponse(body=body))).generate("hi")
    assert out == '{"scenes": []}'


def test_null_content_is_empty_text(monkeypatch):
    monkeypatch.setenv("SB_TEST_KEY", "secret")
    out = _client(FakeSession(_ok(None))).generate("hi")
    assert out == ""
