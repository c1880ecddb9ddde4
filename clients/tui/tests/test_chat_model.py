import tempfile
import unittest
from pathlib import Path

from reechat.chat_model import ACTION_LOGOUT, ACTION_QUIT, ChatModel, popup_lines
from reechat.connection import CommandQueueClosed
from reechat.models import Pane
from reechat.popups import (
    CreateChannelPopup,
    DownloadsPopup,
    EmojisPopup,
    FileManagerPopup,
    MentionsPopup,
    NoPopup,
    QuitPopup,
    SettingsPopup,
    popup_title,
)
from reechat.protocol import DownloadFile, SendChannelMessage, ShowLocalImage, UploadFile
from reechat.state import SharedState

from tests.helpers import make_channel, make_message


class RecordingBus:
    def __init__(self) -> None:
        self.sent = []
        self.closed = False

    def send(self, command) -> None:
        if self.closed:
            raise CommandQueueClosed("The session is no longer accepting commands")
        self.sent.append(command)


class ChatModelTests(unittest.TestCase):
    def setUp(self) -> None:
        self.shared = SharedState()
        self.bus = RecordingBus()
        self.model = ChatModel(self.shared, self.bus)
        with self.shared.locked() as state:
            state.set_channels([make_channel("general"), make_channel("dev")])
            state.set_current_channel(state.channels[0])

    def type_text(self, text: str) -> None:
        for char in text:
            self.model.handle_key("CHAR", char)

    def popup(self):
        with self.shared.locked() as state:
            return state.popup

    def last_notification(self):
        with self.shared.locked() as state:
            return state.notifications.notifications[-1]

    def test_enter_sends_message_with_emojis(self):
        self.type_text("hello :smile:")
        self.model.handle_key("ENTER")
        self.assertEqual(self.bus.sent, [SendChannelMessage("general", "hello 😄")])
        self.assertEqual(self.model.input_text, "")

    def test_empty_input_sends_nothing(self):
        self.type_text("   ")
        self.model.handle_key("ENTER")
        self.assertEqual(self.bus.sent, [])

    def test_closed_bus_posts_send_error(self):
        self.bus.closed = True
        self.type_text("hi")
        self.model.handle_key("ENTER")
        notification = self.last_notification()
        self.assertEqual(notification.title, "Message Send Error")

    def test_download_of_unknown_id(self):
        self.type_text("/download nope")
        self.model.handle_key("ENTER")
        self.assertEqual(self.bus.sent, [])
        notification = self.last_notification()
        self.assertEqual(notification.title, "File Not Found")
        self.assertEqual(notification.content, "File with ID 'nope' not found in this channel.")

    def test_download_of_known_file(self):
        with self.shared.locked() as state:
            state.add_message(make_message(file_id="abc", file_name="report", file_extension="pdf"))
        self.type_text("/download abc")
        self.model.handle_key("ENTER")
        self.assertEqual(self.bus.sent, [DownloadFile("abc", "report.pdf")])

    def test_upload_and_show_commands(self):
        self.type_text("/upload /tmp/cat.gif")
        self.model.handle_key("ENTER")
        self.type_text("/show /tmp/cat.gif")
        self.model.handle_key("ENTER")
        self.assertEqual(
            self.bus.sent,
            [UploadFile("general", Path("/tmp/cat.gif")), ShowLocalImage(Path("/tmp/cat.gif"))],
        )

    def test_mention_popup_requests_active_users_once(self):
        with self.shared.locked() as state:
            state.active_users = ["alice", "albert", "bob"]
        self.type_text("hi @al")

        popup = self.popup()
        self.assertIsInstance(popup, MentionsPopup)
        self.assertEqual(popup.query, "al")
        requests = [c for c in self.bus.sent if c.content == "/get_active_users"]
        self.assertEqual(len(requests), 1)

        self.model.handle_key("DOWN")
        self.model.handle_key("ENTER")
        self.assertEqual(self.model.input_text, "hi @albert ")
        self.assertIsInstance(self.popup(), NoPopup)

    def test_emoji_popup_completes_shortcode(self):
        self.type_text(":smil")
        popup = self.popup()
        self.assertIsInstance(popup, EmojisPopup)
        self.model.handle_key("TAB")
        self.assertIsInstance(self.popup(), NoPopup)
        self.assertTrue(self.model.input_text.endswith(" "))
        self.assertNotIn(":smil", self.model.input_text)

    def test_channel_selection_requests_history(self):
        with self.shared.locked() as state:
            state.focused_pane = Pane.CHANNELS
        self.model.handle_key("DOWN")
        with self.shared.locked() as state:
            self.assertEqual(state.current_channel.id, "dev")
        self.assertEqual(self.bus.sent, [SendChannelMessage("dev", "/get_history dev 0")])

        # Coming back to "dev" while its page is in flight sends nothing new.
        self.model.handle_key("UP")
        self.model.handle_key("DOWN")
        self.assertEqual(
            self.bus.sent,
            [
                SendChannelMessage("dev", "/get_history dev 0"),
                SendChannelMessage("general", "/get_history general 0"),
            ],
        )

    def test_tab_cycles_focus(self):
        seen = []
        for _ in range(3):
            self.model.handle_key("TAB")
            with self.shared.locked() as state:
                seen.append(state.focused_pane)
        self.assertEqual(seen, [Pane.CHANNELS, Pane.MESSAGES, Pane.INPUT])

    def test_quit_flow(self):
        self.assertIsNone(self.model.handle_key("CTRL_Q"))
        self.assertIsInstance(self.popup(), QuitPopup)
        self.model.handle_key("CHAR", "n")
        self.assertIsInstance(self.popup(), NoPopup)
        self.model.handle_key("CTRL_Q")
        self.assertEqual(self.model.handle_key("ENTER"), ACTION_QUIT)

    def test_escape_clears_input_before_quitting(self):
        self.type_text("draft")
        self.model.handle_key("ESC")
        self.assertEqual(self.model.input_text, "")
        self.assertIsInstance(self.popup(), NoPopup)
        self.model.handle_key("ESC")
        self.assertIsInstance(self.popup(), QuitPopup)

    def test_logout_through_settings(self):
        with self.shared.locked() as state:
            state.set_user_auth("tok", "alice", None)
        self.model.handle_key("CTRL_S")
        self.assertIsInstance(self.popup(), SettingsPopup)
        self.model.handle_key("DOWN")
        self.model.handle_key("DOWN")
        self.model.handle_key("ENTER")
        self.assertEqual(self.model.handle_key("CHAR", "y"), ACTION_LOGOUT)
        with self.shared.locked() as state:
            self.assertIsNone(state.auth_token)

    def test_create_channel_proposal(self):
        self.model.handle_key("CTRL_N")
        self.type_text("games")
        self.model.handle_key("TAB")
        self.model.handle_key("RIGHT")
        self.model.handle_key("RIGHT")
        popup = self.popup()
        self.assertIsInstance(popup, CreateChannelPopup)
        self.model.handle_key("ENTER")
        self.assertEqual(self.bus.sent, [SendChannelMessage("home", "/propose_channel games 🎮")])

    def test_downloads_popup_lists_files(self):
        with self.shared.locked() as state:
            state.add_message(make_message(content="plain"))
            state.add_message(make_message(file_id="f1", file_name="a.txt", timestamp=5000))
        self.model.handle_key("CTRL_D")
        with self.shared.locked() as state:
            self.assertEqual(popup_lines(state, state.popup), [("a.txt", True)])
        self.model.handle_key("ENTER")
        self.assertEqual(self.bus.sent, [DownloadFile("f1", "a.txt")])


class FileManagerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.root = Path(self.tmp.name)
        (self.root / "pics").mkdir()
        (self.root / "pics" / "cat.gif").write_bytes(b"GIF89a")
        (self.root / "notes.txt").write_text("hi")
        (self.root / ".hidden").write_text("x")
        self.shared = SharedState()
        self.bus = RecordingBus()
        self.model = ChatModel(self.shared, self.bus, browse_dir=self.root)
        with self.shared.locked() as state:
            state.set_current_channel(make_channel())

    def tearDown(self) -> None:
        self.tmp.cleanup()

    def test_browse_and_upload(self):
        self.model.handle_key("CTRL_U")
        with self.shared.locked() as state:
            popup = state.popup
            self.assertIsInstance(popup, FileManagerPopup)
            self.assertEqual([p.name for p in popup.entries], ["pics", "notes.txt"])
            self.assertEqual(popup_lines(state, popup), [("pics/", True), ("notes.txt", False)])
            self.assertTrue(popup_title(popup).startswith("Upload from"))

        self.model.handle_key("ENTER")
        with self.shared.locked() as state:
            self.assertEqual(state.popup.directory, self.root / "pics")
        self.model.handle_key("ENTER")
        self.assertEqual(self.bus.sent, [UploadFile("general", self.root / "pics" / "cat.gif")])
        self.assertIsInstance(self._popup(), NoPopup)

    def test_backspace_goes_to_parent(self):
        self.model.handle_key("CTRL_U")
        self.model.handle_key("BACKSPACE")
        with self.shared.locked() as state:
            self.assertEqual(state.popup.directory, self.root.parent)

    def _popup(self):
        with self.shared.locked() as state:
            return state.popup


def test_every_popup_has_a_title_and_body():
    shared = SharedState()
    with shared.locked() as state:
        for popup in (
            QuitPopup(),
            SettingsPopup(),
            CreateChannelPopup(),
            MentionsPopup(),
            EmojisPopup(query="smile"),
            DownloadsPopup(),
        ):
            assert popup_title(popup)
            assert popup_lines(state, popup)
