"""
Tests for the markovgen command-line interface.
"""
import pytest

from markovgen.cli import main, read_tokens
from markovgen.services.markov import MarkovModel


@pytest.fixture
def token_file(tmp_path):
    path = tmp_path / "tokens.txt"
    path.write_text("a\nb\n\na\nc\na\nb\n", encoding="utf-8")
    return path


class TestCli:
    """Test suite for train/sample commands."""

    def test_read_tokens_skips_blank_lines(self, token_file):
        """Test one token per line with blank lines dropped."""
        assert read_tokens(token_file) == ["a", "b", "a", "c", "a", "b"]

    def test_train_writes_model(self, token_file, tmp_path):
        """Test train writes a loadable model."""
        out = tmp_path / "out" / "model.json"

        assert main(["train", str(token_file), "-o", str(out)]) == 0
        assert MarkovModel.load(out).elements == ["a", "b", "c"]

    def test_sample_seeded(self, token_file, tmp_path, capsys):
        """Test seeded sampling prints the same tokens every run."""
        out = tmp_path / "model.json"
        main(["train", str(token_file), "-o", str(out)])
        capsys.readouterr()

        main(["sample", str(out), "-n", "12", "--seed", "5"])
        first = capsys.readouterr().out.split()
        main(["sample", str(out), "-n", "12", "--seed", "5"])
        second = capsys.readouterr().out.split()

        assert len(first) == 12
        assert first == second
        assert set(first) <= {"a", "b", "c"}

    def test_sample_reset_every(self, tmp_path, capsys):
        """Test periodic resets start new chains from live states."""
        out = tmp_path / "model.json"
        MarkovModel.build(["x", "y"]).save(out)

        assert main(["sample", str(out), "-n", "6", "--reset-every", "2", "--seed", "1"]) == 0
        assert capsys.readouterr().out.split() == ["y"] * 6

    def test_train_empty_file(self, tmp_path):
        """Test an empty token file fails with a non-zero exit code."""
        empty = tmp_path / "empty.txt"
        empty.write_text("\n\n", encoding="utf-8")

        assert main(["train", str(empty), "-o", str(tmp_path / "m.json")]) == 1

    def test_train_undecodable_file(self, tmp_path):
        """Test a non-UTF-8 token file fails with a non-zero exit code."""
        bad = tmp_path / "bad.txt"
        bad.write_bytes(b"a\n\xff\nb\n")

        assert main(["train", str(bad), "-o", str(tmp_path / "m.json")]) == 1

    def test_sample_missing_model(self, tmp_path):
        """Test sampling a missing model file fails cleanly."""
        assert main(["sample", str(tmp_path / "nope.json")]) == 1
