"""Tests for PII hashing and salt configuration."""
import json
from unittest.mock import MagicMock, patch

import pytest

from moodlink.shared.utils import pii
from moodlink.shared.utils import (
    configure_pii_salt,
    configure_pii_salt_from_env,
    hash_pii,
    load_pii_salt_from_secrets_manager,
    short_hash,
)

TEST_SALT = "test_salt_that_is_at_least_32_characters_long"


@pytest.fixture(autouse=True)
def setup_pii_salt():
    configure_pii_salt(TEST_SALT)


class TestConfigurePiiSalt:
    def test_rejects_short_salt(self):
        with pytest.raises(ValueError):
            configure_pii_salt("too_short")

    def test_rejects_empty_salt(self):
        with pytest.raises(ValueError):
            configure_pii_salt("")

    def test_unconfigured_salt_raises(self, monkeypatch):
        monkeypatch.setattr(pii, "_PII_SALT", None)

        with pytest.raises(RuntimeError):
            hash_pii("user_123")


class TestHashPii:
    def test_consistent(self):
        assert hash_pii("user_123") == hash_pii("user_123")

    def test_distinct_inputs(self):
        assert hash_pii("user_123") != hash_pii("user_456")

    def test_hex_digest(self):
        assert len(hash_pii("user_123")) == 64

    def test_depends_on_salt(self):
        first = hash_pii("user_123")
        configure_pii_salt("another_salt_that_is_also_32_chars_or_more")

        assert hash_pii("user_123") != first

    def test_short_hash_is_prefix(self):
        assert short_hash("user_123") == hash_pii("user_123")[:12]
        assert len(short_hash("user_123", length=8)) == 8


class TestSecretsManager:
    @patch("boto3.client")
    def test_loads_json_secret(self, mock_client):
        salt = "secret_manager_salt_of_at_least_32_characters"
        mock_client.return_value.get_secret_value.return_value = {
            "SecretString": json.dumps({"pii_salt": salt})
        }

        load_pii_salt_from_secrets_manager("arn:aws:secretsmanager:salt")

        assert pii._PII_SALT == salt
        mock_client.assert_called_once_with("secretsmanager", region_name="us-east-1")

    @patch("boto3.client")
    def test_loads_plain_secret(self, mock_client):
        salt = "plain_secret_salt_value_of_32_characters_min"
        mock_client.return_value.get_secret_value.return_value = {"SecretString": salt}

        load_pii_salt_from_secrets_manager("arn:aws:secretsmanager:salt", region="eu-west-1")

        assert pii._PII_SALT == salt

    @patch("boto3.client")
    def test_client_errors_propagate(self, mock_client):
        mock_client.return_value.get_secret_value.side_effect = RuntimeError("denied")

        with pytest.raises(RuntimeError):
            load_pii_salt_from_secrets_manager("arn:aws:secretsmanager:salt")


class TestConfigureFromEnv:
    def test_uses_env_salt(self):
        salt = "environment_salt_value_with_32_characters_x"
        with patch.dict("os.environ", {"PII_HASH_SALT": salt}, clear=True):
            configure_pii_salt_from_env()

        assert pii._PII_SALT == salt

    def test_prefers_secret_arn(self):
        loader = MagicMock()
        env = {"PII_SALT_SECRET_ARN": "arn:aws:secretsmanager:salt", "AWS_REGION": "us-west-2"}
        with patch.dict("os.environ", env, clear=True), \
                patch.object(pii, "load_pii_salt_from_secrets_manager", loader):
            configure_pii_salt_from_env()

        loader.assert_called_once_with("arn:aws:secretsmanager:salt", "us-west-2")

    def test_missing_salt_raises(self):
        with patch.dict("os.environ", {}, clear=True):
            with pytest.raises(ValueError):
                configure_pii_salt_from_env()
