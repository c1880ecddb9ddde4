"""Terminal chat client with a concurrent session runtime."""
