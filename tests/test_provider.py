import io
import json

import pytest
from rich.console import Console

from agentjobs.llm.provider import PLANNING, ConsoleEchoProvider, OllamaProvider, PromptContext

PLAN_CONTEXT = PromptContext(agent_name="planner", task_id="job-1", iteration=1, purpose=PLANNING)
TASK_CONTEXT = PromptContext(agent_name="Writer", task_id="task-7", iteration=2)


class FakeResponse:
    def __init__(self, payload):
        self.body = json.dumps(payload).encode("utf-8")

    def read(self):
        return self.body

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


def test_planning_requests_ask_for_json():
    payload = OllamaProvider("qwen3").build_payload("plan it", PLAN_CONTEXT)

    assert payload["format"] == "json"
    assert "ordered tasks" in payload["system"]


def test_task_requests_name_the_agent_and_step():
    provider = OllamaProvider("qwen3", system_prompts={"task": "{agent} / {task} / {iteration}"})

    payload = provider.build_payload("do it", TASK_CONTEXT)

    assert "format" not in payload
    assert payload["system"] == "Writer / task-7 / 2"


def test_generate_posts_payload_and_strips_reply(monkeypatch):
    sent = []

    def fake_urlopen(request, timeout):
        sent.append((request.full_url, json.loads(request.data), timeout))
        return FakeResponse({"response": "  [] \n"})

    monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)
    provider = OllamaProvider("qwen3", host="http://ollama:11434/", timeout=5)

    assert provider.generate("plan it", PLAN_CONTEXT) == "[]"
    url, body, timeout = sent[0]
    assert url == "http://ollama:11434/api/generate"
    assert body["model"] == "qwen3" and body["prompt"] == "plan it"
    assert timeout == 5


def test_generate_reports_model_errors(monkeypatch):
    monkeypatch.setattr("urllib.request.urlopen", lambda request, timeout: FakeResponse({"error": "no such model"}))

    with pytest.raises(RuntimeError, match="no such model"):
        OllamaProvider("missing").generate("hi", TASK_CONTEXT)


def test_console_provider_reads_reply_until_blank_line(monkeypatch):
    replies = iter(['{"action": "final",', '"answer": "ok"}', ""])
    monkeypatch.setattr("builtins.input", lambda *args: next(replies))
    out = io.StringIO()

    reply = ConsoleEchoProvider(Console(file=out, width=120)).generate("Task: greet", TASK_CONTEXT)

    assert reply == '{"action": "final",\n"answer": "ok"}'
    shown = out.getvalue()
    assert "task: Writer on task-7, step 2" in shown
    assert "Task: greet" in shown
    assert "JSON action" in shown
