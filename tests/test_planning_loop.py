import json

import pytest

from agentjobs.agents.planning import PlanningLoop, ProviderToolCaller
from agentjobs.errors import ToolStepLimitError
from agentjobs.llm.provider import StaticResponseProvider
from agentjobs.tools.base import Toolset
from agentjobs.tools.builtin import CalculatorTool, EchoTool


def _toolset():
    return Toolset(
        {"calculator": CalculatorTool(name="calculator"), "echo": EchoTool(name="echo")},
        agent_name="wallet",
        task_id="task-1",
    )


def _step(action, value=None, thought="", answer=None):
    return json.dumps({"thought": thought, "action": action, "input": value, "answer": answer})


def test_tool_call_then_final_answer():
    provider = StaticResponseProvider(
        [
            _step("calculator", "2 + 3", thought="need the sum"),
            _step("final", thought="got it", answer="The sum is 5"),
        ]
    )
    toolset = _toolset()

    outcome = ProviderToolCaller(provider).execute_with_tools("Be exact.", "Task: add", toolset, max_steps=3)

    assert outcome.text == "The sum is 5"
    assert outcome.reasoning == "need the sum\ngot it"
    assert [(call.tool_name, call.result) for call in outcome.tool_calls] == [("calculator", "5")]
    assert "calculator({\"input\": \"2 + 3\"}) => 5" in provider.prompts[1]
    assert provider.prompts[0].startswith("Be exact.\n\nTask: add")
    assert [context.iteration for context in provider.contexts] == [1, 2]
    assert not any(context.is_planning for context in provider.contexts)


def test_plain_text_is_a_direct_answer():
    provider = StaticResponseProvider(["<think>easy</think>Paris"])
    loop = PlanningLoop(provider, instructions="", prompt="Capital of France?", toolset=_toolset(), max_steps=2)

    outcome = loop.execute()

    assert outcome.text == "Paris"
    assert outcome.reasoning == "easy"
    assert outcome.tool_calls == []
    assert len(loop.trace) == 1


def test_structured_input_is_passed_as_json():
    provider = StaticResponseProvider(
        [_step("calculator", {"expression": "6 * 7"}), _step("final", answer="42")]
    )
    toolset = _toolset()

    ProviderToolCaller(provider).execute_with_tools("", "Task: multiply", toolset, max_steps=2)

    assert toolset.calls[0].arguments == {"expression": "6 * 7"}
    assert toolset.calls[0].result == "42"


def test_unknown_tool_is_reported_back_to_the_model():
    provider = StaticResponseProvider([_step("search", "news"), _step("final", answer="no search available")])
    toolset = _toolset()

    outcome = ProviderToolCaller(provider).execute_with_tools("", "Task: news", toolset, max_steps=2)

    assert outcome.text == "no search available"
    assert toolset.calls[0].error == "Unknown tool 'search'"
    assert "ERROR Unknown tool 'search'" in provider.prompts[1]


def test_running_out_of_steps_raises():
    provider = StaticResponseProvider([_step("echo", "a"), _step("echo", "b"), _step("echo", "c")])
    toolset = _toolset()

    with pytest.raises(ToolStepLimitError):
        ProviderToolCaller(provider).execute_with_tools("", "Task: loop", toolset, max_steps=2)
    assert len(toolset.calls) == 2
