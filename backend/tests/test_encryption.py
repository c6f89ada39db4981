"""Credential vault tests"""
import pytest
from cryptography.fernet import Fernet

from app.utils.encryption import CredentialVault


@pytest.mark.critical
class TestCredentialVault:
    def test_round_trip(self):
        vault = CredentialVault(Fernet.generate_key().decode())
        ciphertext = vault.protect("EAAB-page-token")
        assert ciphertext != "EAAB-page-token"
        assert vault.unprotect(ciphertext) == "EAAB-page-token"

    def test_empty_values_stay_empty(self):
        vault = CredentialVault(Fernet.generate_key())
        assert vault.protect("") == ""
        assert vault.protect(None) == ""
        assert vault.unprotect("") is None
        assert vault.unprotect(None) is None

    def test_wrong_key_raises_value_error_without_ciphertext(self):
        ciphertext = CredentialVault(Fernet.generate_key()).protect("secret")
        with pytest.raises(ValueError) as exc_info:
            CredentialVault(Fernet.generate_key()).unprotect(ciphertext)
        assert ciphertext not in str(exc_info.value)

    def test_invalid_key_format(self):
        with pytest.raises(ValueError, match="Invalid ENCRYPTION_KEY format"):
            CredentialVault("too-short")

    def test_missing_key(self):
        with pytest.raises(ValueError, match="required"):
            CredentialVault([])


@pytest.mark.high
class TestKeyRotation:
    def test_old_ciphertext_readable_after_rotation(self):
        old_key, new_key = Fernet.generate_key(), Fernet.generate_key()
        old_vault = CredentialVault([old_key])
        ciphertext = old_vault.protect("refresh-token")

        rotated_vault = CredentialVault([new_key, old_key])
        assert rotated_vault.unprotect(ciphertext) == "refresh-token"

        rewritten = rotated_vault.rotate(ciphertext)
        assert CredentialVault([new_key]).unprotect(rewritten) == "refresh-token"
