import os
import stat

import pytest

from muxagent.privdir import ensure, ensure_within


def _mode(path):
    return stat.S_IMODE(os.stat(path).st_mode)


def test_ensure_creates_nested_owner_only(tmp_path):
    target = tmp_path / "a" / "b"
    ensure(target)
    assert target.is_dir()
    assert _mode(target) == 0o700


def test_ensure_tightens_existing_directory(tmp_path):
    target = tmp_path / "open"
    target.mkdir()
    os.chmod(target, 0o755)
    ensure(target)
    assert _mode(target) == 0o700


def test_ensure_on_file_raises(tmp_path):
    target = tmp_path / "file"
    target.write_text("x")
    with pytest.raises(FileExistsError):
        ensure(target)


def test_ensure_within_tightens_up_to_root(tmp_path):
    outer_mode = _mode(tmp_path)
    root = tmp_path / "root"
    root.mkdir()
    os.chmod(root, 0o755)
    middle = root / "x"
    middle.mkdir()
    os.chmod(middle, 0o755)
    leaf = middle / "y"
    ensure_within(leaf, root)
    assert [_mode(p) for p in (root, middle, leaf)] == [0o700] * 3
    assert _mode(tmp_path) == outer_mode


def test_ensure_within_normalizes_paths(tmp_path):
    root = tmp_path / "root"
    root.mkdir()
    os.chmod(root, 0o755)
    leaf = root / "z"
    ensure_within(str(leaf) + "/", str(root) + "/")
    assert _mode(root) == 0o700
    assert _mode(leaf) == 0o700