"""Tests for the app factory."""

import os
import unittest
from unittest.mock import MagicMock, patch

from flask import session

from courtkeeper import create_app
from courtkeeper.auth.decorators import login_required


class AppFactoryTestCase(unittest.TestCase):
    """Test case for the app factory."""

    @patch("firebase_admin.initialize_app")
    @patch("firebase_admin.firestore.client")
    def test_404_error_handler(self, mock_firestore_client, mock_init_app):
        """Unknown routes get a JSON 404."""
        app = create_app({"TESTING": True, "WTF_CSRF_ENABLED": False})

        with app.test_client() as client:
            response = client.get("/non_existent_page")
            self.assertEqual(response.status_code, 404)
            self.assertEqual(response.get_json(), {"error": "Page Not Found"})

    def test_blueprints_registered(self):
        """The match and tournament APIs are mounted."""
        app = create_app({"TESTING": True})
        rules = {rule.rule for rule in app.url_map.iter_rules()}
        self.assertIn("/match/<string:match_id>/score", rules)
        self.assertIn("/match/<string:match_id>/resolve", rules)
        self.assertIn("/tournaments/<string:tournament_id>/escalate", rules)

    @patch("courtkeeper._init_firebase")
    def test_firebase_skipped_when_testing(self, mock_init):
        """Testing apps never touch real credentials."""
        create_app({"TESTING": True})
        mock_init.assert_not_called()

    def test_mail_config_sanitization(self):
        """MAIL_USERNAME and MAIL_PASSWORD lose stray quotes and spaces."""
        env_vars = {
            "MAIL_USERNAME": '"user@example.com"',
            "MAIL_PASSWORD": '"xxxx xxxx xxxx"',
            "SECRET_KEY": "dev",
        }

        with patch.dict(os.environ, env_vars):
            app = create_app({"TESTING": True})

            self.assertEqual(app.config["MAIL_USERNAME"], "user@example.com")
            self.assertEqual(app.config["MAIL_PASSWORD"], "xxxxxxxxxxxx")

    def test_mail_config_sanitization_single_quotes(self):
        """Single quotes are stripped too."""
        env_vars = {
            "MAIL_USERNAME": "'user@example.com'",
            "MAIL_PASSWORD": "'xxxx xxxx xxxx'",
        }

        with patch.dict(os.environ, env_vars):
            app = create_app({"TESTING": True})

            self.assertEqual(app.config["MAIL_USERNAME"], "user@example.com")
            self.assertEqual(app.config["MAIL_PASSWORD"], "xxxxxxxxxxxx")

    def test_mail_config_empty_env_vars(self):
        """Empty environment variables fall back to default values."""
        env_vars = {
            "MAIL_SERVER": "",
            "MAIL_PORT": "",
            "MAIL_USE_TLS": "",
            "MAIL_USE_SSL": "",
        }

        with patch.dict(os.environ, env_vars):
            app = create_app({"TESTING": True})

            self.assertEqual(app.config["MAIL_SERVER"], "smtp.gmail.com")
            self.assertEqual(app.config["MAIL_PORT"], 587)
            self.assertTrue(app.config["MAIL_USE_TLS"])
            self.assertFalse(app.config["MAIL_USE_SSL"])



class LoginRequiredTestCase(unittest.TestCase):
    """Test case for the login decorator."""

    def setUp(self):
        """Set up an app with one protected view."""
        user_doc = MagicMock(exists=True)
        user_doc.to_dict.return_value = {"name": "Alice"}
        db = MagicMock()
        db.collection.return_value.document.return_value.get.return_value = user_doc
        patcher = patch("firebase_admin.firestore.client", return_value=db)
        patcher.start()
        self.addCleanup(patcher.stop)

        self.app = create_app({"TESTING": True, "SECRET_KEY": "test"})

        @self.app.route("/protected")
        @login_required
        def protected():
            return {"user": session["user_id"]}

        self.client = self.app.test_client()

    def test_anonymous_request_rejected(self):
        """No session means a JSON 401."""
        response = self.client.get("/protected")
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.get_json(), {"error": "Authentication required."})

    def test_logged_in_request_passes(self):
        """Any signed-in user reaches the view; roles are checked later."""
        with self.client.session_transaction() as sess:
            sess["user_id"] = "alice"
        response = self.client.get("/protected")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json(), {"user": "alice"})


if __name__ == "__main__":
    unittest.main()
