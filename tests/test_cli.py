import json
import types

import pytest

from agentic_bridge.cli import build_parser, main


def _groq(calls):
    tool_calls = [
        types.SimpleNamespace(
            id=f"call_{i}", type="function", function=types.SimpleNamespace(name=name, arguments=json.dumps(args))
        )
        for i, (name, args) in enumerate(calls)
    ]
    message = types.SimpleNamespace(content=None, tool_calls=tool_calls)
    return types.SimpleNamespace(choices=[types.SimpleNamespace(message=message)])


@pytest.fixture
def project(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("GROQ_API_KEY", "gk")
    root = tmp_path / "app"
    root.mkdir()
    (root / "package.json").write_text(json.dumps({"scripts": {"build": "vite build"}}))
    return root


def test_parser_requires_command():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])
    args = build_parser().parse_args(["run", "proj", "-t", "do it", "-p", "groq", "--write"])
    assert (args.project, args.task, args.provider, args.write) == ("proj", "do it", "groq", True)


def test_run_writes_changes_back(project, scripted_runtime, capsys):
    scripted_runtime.replies.extend(
        [
            _groq([("plan_steps", {"steps": ["add app"]})]),
            _groq([("create_or_update_files", {"files": {"src/App.tsx": "export default 1"}}), ("run_build_and_lint", {})]),
            _groq([("finish_task", {"summary": "done"})]),
        ]
    )
    assert main(["run", str(project), "-t", "add an app", "-p", "groq", "--write"]) == 0
    assert (project / "src" / "App.tsx").read_text() == "export default 1"
    assert "Stopped: finished" in capsys.readouterr().out


def test_run_without_write_only_lists(project, scripted_runtime, capsys):
    scripted_runtime.replies.append(_groq([("create_or_update_files", {"files": {"new.txt": "x"}}), ("chat", {"response": "wrote it"})]))
    assert main(["run", str(project), "-t", "add a file", "-p", "groq"]) == 0
    out = capsys.readouterr().out
    assert "Changes not written" in out
    assert "new.txt" in out
    assert not (project / "new.txt").exists()


def test_missing_project_dir(project, capsys):
    assert main(["run", "does-not-exist", "-t", "x"]) == 1
    assert "not found" in capsys.readouterr().out
