from agentic_bridge.system_prompt import (
    EMPTY_FILE_SYSTEM_PLACEHOLDER,
    build_system_instruction,
    render_file_listing,
)


def test_empty_snapshot_uses_placeholder():
    instruction = build_system_instruction({})
    assert instruction.endswith("**Current File System:**\n" + EMPTY_FILE_SYSTEM_PLACEHOLDER)
    assert EMPTY_FILE_SYSTEM_PLACEHOLDER == "No files exist yet."


def test_listing_is_sorted_and_content_independent():
    a = build_system_instruction({"src/b.ts": "1", "index.html": "<html/>", "src/a.ts": "2"})
    b = build_system_instruction({"src/a.ts": "changed", "src/b.ts": "", "index.html": "x"})
    assert a == b
    assert a.endswith("index.html\nsrc/a.ts\nsrc/b.ts")


def test_referentially_transparent():
    snapshot = {"package.json": "{}"}
    assert build_system_instruction(snapshot) == build_system_instruction(dict(snapshot))


def test_render_file_listing_dedupes():
    assert render_file_listing(["b", "a", "b"]) == "a\nb"
    assert render_file_listing([]) == EMPTY_FILE_SYSTEM_PLACEHOLDER


def test_instruction_mentions_every_workflow_tool():
    instruction = build_system_instruction({})
    for name in ("plan_steps", "run_build_and_lint", "finish_task", "chat"):
        assert name in instruction
