import unittest

from reechat.redact import redact_mapping, redact_text


class TestRedactionHelpers(unittest.TestCase):
    def test_redact_text_redacts_bearer_and_known_keys(self):
        text = 'Authorization: Bearer abc123 password=hunter2 {"token": "tok-secret"} credential=credtok'
        redacted = redact_text(text)
        self.assertIn("Bearer [REDACTED]", redacted)
        self.assertIn("password=[REDACTED]", redacted)
        self.assertIn('"token": "[REDACTED]"', redacted)
        self.assertIn("credential=[REDACTED]", redacted)
        for secret in ("abc123", "hunter2", "tok-secret", "credtok"):
            self.assertNotIn(secret, redacted)

    def test_plain_chat_text_is_untouched(self):
        self.assertEqual(redact_text("see you at 5, bring the cat"), "see you at 5, bring the cat")

    def test_redact_mapping_replaces_sensitive_values(self):
        payload = {
            "username": "alice",
            "password": "hunter2",
            "nested": {"auth_token": "secret", "safe": "value"},
            "items": [{"Authorization": "Bearer x"}, {"other": "ok"}],
        }
        redacted = redact_mapping(payload)
        self.assertEqual(redacted["username"], "alice")
        self.assertEqual(redacted["password"], "[REDACTED]")
        self.assertEqual(redacted["nested"]["auth_token"], "[REDACTED]")
        self.assertEqual(redacted["nested"]["safe"], "value")
        self.assertEqual(redacted["items"][0]["Authorization"], "[REDACTED]")
        self.assertEqual(redacted["items"][1]["other"], "ok")
        self.assertEqual(payload["password"], "hunter2")


if __name__ == "__main__":
    unittest.main()
