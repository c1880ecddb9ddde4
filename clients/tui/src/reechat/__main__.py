"""Thin runnable wrapper: ``python -m reechat``."""

from reechat.tui_app import main

if __name__ == "__main__":
    raise SystemExit(main())
