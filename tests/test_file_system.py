import pytest

from agentic_bridge.errors import ValidationError
from agentic_bridge.workflow import FileSystemSnapshot


def test_changes_produce_new_snapshots():
    base = FileSystemSnapshot({"a.txt": "A"})
    updated = base.with_files({"b.txt": "B", "a.txt": "A2"})
    removed = updated.without("a.txt")
    assert base.to_dict() == {"a.txt": "A"}
    assert updated.to_dict() == {"a.txt": "A2", "b.txt": "B"}
    assert removed.paths() == ["b.txt"]
    assert removed.without("missing") is removed


@pytest.mark.parametrize("raw", [None, ["a"], {"a.txt": 1}, {1: "x"}])
def test_from_wire_rejects_bad_shapes(raw):
    with pytest.raises(ValidationError):
        FileSystemSnapshot.from_wire(raw)


def test_from_directory_skips_ignored_and_binary(tmp_path):
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "App.tsx").write_text("app")
    (tmp_path / "node_modules" / "x").mkdir(parents=True)
    (tmp_path / "node_modules" / "x" / "index.js").write_text("dep")
    (tmp_path / "logo.png").write_bytes(b"\x89PNG\xff\xfe")
    snapshot = FileSystemSnapshot.from_directory(str(tmp_path))
    assert snapshot.to_dict() == {"src/App.tsx": "app"}


def test_write_to_only_touches_changes(tmp_path):
    before = FileSystemSnapshot({"keep.txt": "same", "old.txt": "bye", "edit.txt": "v1"})
    before.write_to(str(tmp_path))
    after = before.without("old.txt").with_files({"edit.txt": "v2", "new/deep.txt": "hi"})

    touched = after.write_to(str(tmp_path), previous=before)
    assert sorted(touched) == ["edit.txt", "new/deep.txt", "old.txt"]
    assert not (tmp_path / "old.txt").exists()
    assert (tmp_path / "edit.txt").read_text() == "v2"
    assert (tmp_path / "new" / "deep.txt").read_text() == "hi"


def test_write_to_refuses_paths_outside_root(tmp_path):
    root = tmp_path / "project"
    root.mkdir()
    with pytest.raises(ValidationError):
        FileSystemSnapshot({"../escape.txt": "x"}).write_to(str(root))
    assert not (tmp_path / "escape.txt").exists()


def test_write_to_writes_nothing_when_any_path_is_rejected(tmp_path):
    snapshot = FileSystemSnapshot({"a.txt": "x", "/abs.txt": "y"})
    with pytest.raises(ValidationError):
        snapshot.write_to(str(tmp_path))
    assert list(tmp_path.iterdir()) == []


def test_write_to_checks_removals_before_writing(tmp_path):
    previous = FileSystemSnapshot({"../outside.txt": "old"})
    with pytest.raises(ValidationError):
        FileSystemSnapshot({"a.txt": "x"}).write_to(str(tmp_path), previous=previous)
    assert not (tmp_path / "a.txt").exists()
