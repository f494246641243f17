from ralph_loop.core import DelegatedTask
from ralph_loop.planning import (
    PLANNING_DIRECTIVE,
    build_planning_prompt,
    extract_task_list,
    parse_task_list,
)


PROMPT = "Improve the project"


# --- build_planning_prompt ---

def test_planning_prompt_keeps_original_prompt_first():
    prompt = build_planning_prompt(PROMPT)
    assert prompt.startswith(PROMPT)
    assert PLANNING_DIRECTIVE in prompt
    assert "2-4 independent parallel tasks" in prompt


# --- parse_task_list ---

def test_list_embedded_in_prose():
    tasks, fallback = parse_task_list('Here are tasks: ["Add tests", "Fix bug"] done', PROMPT)
    assert fallback is False
    assert [t.description for t in tasks] == ["Add tests", "Fix bug"]
    assert [t.index for t in tasks] == [0, 1]


def test_unparsable_output_falls_back_to_prompt():
    tasks, fallback = parse_task_list("no list here", PROMPT)
    assert fallback is True
    assert tasks == [DelegatedTask(index=0, description=PROMPT)]


def test_list_inside_code_fence():
    text = 'Plan:\n```json\n[\n  "Write docs",\n  "Refactor cli",\n  "Add CI"\n]\n```\n'
    tasks, fallback = parse_task_list(text, PROMPT)
    assert fallback is False
    assert [t.description for t in tasks] == ["Write docs", "Refactor cli", "Add CI"]


def test_invalid_json_falls_back():
    tasks, fallback = parse_task_list("[Add tests, Fix bug]", PROMPT)
    assert fallback is True
    assert tasks[0].description == PROMPT


def test_empty_list_falls_back():
    tasks, fallback = parse_task_list("[]", PROMPT)
    assert fallback is True
    assert len(tasks) == 1


def test_non_string_items_fall_back():
    _, fallback = parse_task_list('[1, 2, 3]', PROMPT)
    assert fallback is True


def test_skips_citation_brackets_before_task_list():
    text = 'As noted in [1], here is the plan: ["Add tests", "Fix bug"]'
    assert extract_task_list(text) == ["Add tests", "Fix bug"]


def test_first_valid_list_wins():
    text = '["First", "Second"] and later ["Other"]'
    assert extract_task_list(text) == ["First", "Second"]


def test_blank_task_strings_rejected():
    assert extract_task_list('["  ", "Fix bug"]') is None
