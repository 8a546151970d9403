from __future__ import annotations

from pathlib import Path

from xllive.mcp.shared.backup import backup_path_for, create_backup


def test_backup_path_appends_suffix(tmp_path: Path) -> None:
    assert backup_path_for(tmp_path / "book.xlsx") == tmp_path / "book.xlsx.backup"


def test_create_backup_copies_and_replaces(tmp_path: Path) -> None:
    source = tmp_path / "book.xlsx"
    source.write_bytes(b"first")
    target = create_backup(source)
    assert target == tmp_path / "book.xlsx.backup"
    assert target.read_bytes() == b"first"

    source.write_bytes(b"second")
    create_backup(source)
    assert target.read_bytes() == b"second"


def test_create_backup_missing_file(tmp_path: Path) -> None:
    assert create_backup(tmp_path / "missing.xlsx") is None
