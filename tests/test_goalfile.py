import pytest

from goal_engine.errors import ConfigurationError, GoalFileError
from goal_engine.goalfile import load_goal_file, parse_goal_text


def test_parse_three_sections():
    goal = parse_goal_text("Write greeting\n---\nCreate hello.txt.\nKeep it short.\n---\nhello.txt exists\n")
    assert goal.title == "Write greeting"
    assert goal.description == "Create hello.txt.\nKeep it short."
    assert goal.dod == "hello.txt exists"
    assert goal.completed == []
    assert goal.turns == 0


def test_delimiter_must_be_its_own_line():
    text = "Title\n---\nUse --- sparingly, e.g. a---b\n---\nDone"
    goal = parse_goal_text(text)
    assert goal.description == "Use --- sparingly, e.g. a---b"


@pytest.mark.parametrize(
    "text",
    [
        "only a title",
        "title\n---\ndescription",
        "a\n---\nb\n---\nc\n---\nd",
        "\n---\ndescription\n---\ndod",
    ],
)
def test_malformed_goal_text(text):
    with pytest.raises(GoalFileError):
        parse_goal_text(text)


def test_load_goal_file(tmp_path):
    path = tmp_path / "goal.txt"
    path.write_text("T\n---\nD\n---\nDoD", encoding="utf-8")
    assert load_goal_file(path).title == "T"


def test_missing_goal_file_is_configuration_error(tmp_path):
    with pytest.raises(ConfigurationError, match="Cannot read goal file"):
        load_goal_file(tmp_path / "absent.txt")
