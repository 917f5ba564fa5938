"""
Tests for the build_context_graph command-line tool.
"""

import string

import pytest

from build_context_graph import main


@pytest.fixture
def units_file(tmp_path):
    path = tmp_path / "units.txt"
    tokens = ["<blank>"] + list(string.ascii_lowercase)
    path.write_text(
        "".join(f"{token} {i}\n" for i, token in enumerate(tokens)), encoding="utf-8"
    )
    return path


@pytest.fixture
def contexts_file(tmp_path):
    path = tmp_path / "contexts.txt"
    path.write_text("abc\nwenet\n", encoding="utf-8")
    return path


def test_reports_graph(units_file, contexts_file, capsys):
    main([str(units_file), str(contexts_file)])

    out = capsys.readouterr().out
    assert "Loaded 27 symbols and 2 contexts" in out
    assert "Contexts compiled: 2/2" in out
    assert "States:" in out


def test_replays_text(units_file, contexts_file, capsys):
    total = main([str(units_file), str(contexts_file), "--text", "xabcwe"])

    assert total == pytest.approx(15.0)
    out = capsys.readouterr().out
    assert "Total context bonus: 15.00" in out


def test_context_score_option(units_file, contexts_file):
    total = main(
        [str(units_file), str(contexts_file), "--context-score", "1.0", "--text", "abc"]
    )
    assert total == pytest.approx(3.0)


def test_empty_context_file(units_file, tmp_path, capsys):
    contexts = tmp_path / "empty.txt"
    contexts.write_text("\n", encoding="utf-8")

    total = main([str(units_file), str(contexts), "--text", "abc"])

    assert total == 0.0
    assert "context biasing disabled" in capsys.readouterr().out
