import pytest

from reechat.message_parsing import (
    InputCommand,
    complete_fragment,
    current_fragment,
    emoji_candidates,
    mention_candidates,
    parse_input_command,
    replace_shortcodes_with_emojis,
    should_show_emoji_popup,
    should_show_mention_popup,
)


def test_replace_shortcodes_with_emojis():
    assert replace_shortcodes_with_emojis("Hello :smile:") == "Hello 😄"
    assert replace_shortcodes_with_emojis(":+1: nice") == "👍 nice"
    assert replace_shortcodes_with_emojis("keep :not_a_real_code_xyz:") == "keep :not_a_real_code_xyz:"
    assert replace_shortcodes_with_emojis("no codes") == "no codes"


@pytest.mark.parametrize("text", ["hello :", "hello :s", "hello :smile", ":"])
def test_emoji_popup_opens_for_open_shortcode(text):
    assert should_show_emoji_popup(text)


@pytest.mark.parametrize(
    "text",
    [":smile:", ":smile: ", "hello", "::", ":a:", "one : two", "invalid : shortcode", ":s:hortcode", ":s: ", ""],
)
def test_emoji_popup_stays_closed(text):
    assert not should_show_emoji_popup(text)


@pytest.mark.parametrize("text", ["hello @", "@u", "@user"])
def test_mention_popup_opens(text):
    assert should_show_mention_popup(text)


@pytest.mark.parametrize("text", ["@user ", "hello", "@@", "@user@", "@user: ", ""])
def test_mention_popup_stays_closed(text):
    assert not should_show_mention_popup(text)


def test_fragment_helpers():
    assert current_fragment("hi @al") == "al"
    assert current_fragment("hi :sm") == "sm"
    assert complete_fragment("hi @al", "@alice") == "hi @alice "
    assert complete_fragment("hi :sm", "😄") == "hi 😄 "


def test_candidates():
    assert mention_candidates("al", ["bob", "alice", "Alfred"]) == ["alice", "Alfred"]
    codes = [code for code, _ in emoji_candidates("smil")]
    assert codes and all(code.startswith(":smil") for code in codes)
    assert ":smile:" in [code for code, _ in emoji_candidates("smile", limit=50)]


def test_parse_input_command():
    assert parse_input_command("/upload ~/cat.gif") == InputCommand("upload", "~/cat.gif")
    assert parse_input_command("  /download abc123 ") == InputCommand("download", "abc123")
    assert parse_input_command("/show") == InputCommand("show", "")
    assert parse_input_command("/get_history general 0") is None
    assert parse_input_command("plain text") is None
