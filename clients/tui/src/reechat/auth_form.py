"""State machine for the login/register page."""

from __future__ import annotations

from dataclasses import dataclass

MODE_LOGIN = "login"
MODE_REGISTER = "register"
USER_ICONS = ("🙂", "😎", "🐱", "🦊", "🐼", "🤖", "👾")


@dataclass
class AuthForm:
    username: str = ""
    password: str = ""
    icon_index: int = 0
    mode: str = MODE_LOGIN
    field: int = 0
    status: str = ""
    busy: bool = False

    @property
    def icon(self) -> str:
        return USER_ICONS[self.icon_index % len(USER_ICONS)]

    @property
    def field_count(self) -> int:
        return 3 if self.mode == MODE_REGISTER else 2

    def handle_key(self, key: str, char: str | None = None) -> str | None:
        """Return ``"submit"`` or ``"quit"`` when the page should act."""

        if key in ("ESC", "CTRL_Q", "CTRL_C"):
            return "quit"
        if self.busy:
            return None
        if key == "CTRL_R":
            self.mode = MODE_REGISTER if self.mode == MODE_LOGIN else MODE_LOGIN
            self.field = min(self.field, self.field_count - 1)
            self.status = ""
            return None
        if key in ("TAB", "DOWN"):
            self.field = (self.field + 1) % self.field_count
            return None
        if key in ("SHIFT_TAB", "UP"):
            self.field = (self.field - 1) % self.field_count
            return None
        if self.field == 2:
            if key in ("LEFT", "RIGHT"):
                step = -1 if key == "LEFT" else 1
                self.icon_index = (self.icon_index + step) % len(USER_ICONS)
                return None
        if key == "BACKSPACE":
            if self.field == 0:
                self.username = self.username[:-1]
            elif self.field == 1:
                self.password = self.password[:-1]
            return None
        if key == "CHAR" and char:
            if self.field == 0 and not char.isspace():
                self.username += char
            elif self.field == 1:
                self.password += char
            return None
        if key == "ENTER":
            if not self.username or not self.password:
                self.status = "Username and password are required."
                return None
            self.busy = True
            self.status = "Registering..." if self.mode == MODE_REGISTER else "Logging in..."
            return "submit"
        return None

    def fail(self, message: str) -> None:
        self.busy = False
        self.password = ""
        self.status = message
