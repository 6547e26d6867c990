"""Unit tests for auth/passwords.py -- bcrypt hashing and verification.

Covers:
- Digests embed a fresh salt (same input, different digests)
- verify() accepts the right password and rejects a wrong one
- Malformed digests raise HashError; wrong passwords never do
- needs_rehash() tracks the configured cost
- Over-long passwords are refused, never silently truncated
"""

import pytest

from auth.errors import HashError
from auth.passwords import MAX_PASSWORD_BYTES, PasswordHasher


class TestHashAndVerify:
    def test_round_trip(self, hasher: PasswordHasher) -> None:
        digest = hasher.hash("correct horse")
        assert hasher.verify("correct horse", digest) is True

    def test_wrong_password_is_false(self, hasher: PasswordHasher) -> None:
        digest = hasher.hash("correct horse")
        assert hasher.verify("battery staple", digest) is False

    def test_digest_is_salted(self, hasher: PasswordHasher) -> None:
        assert hasher.hash("same input") != hasher.hash("same input")

    def test_digest_embeds_cost(self, hasher: PasswordHasher) -> None:
        assert hasher.hash("pw123456").startswith("$2b$04$")

    def test_plaintext_not_in_digest(self, hasher: PasswordHasher) -> None:
        assert "hunter22" not in hasher.hash("hunter22")


class TestMalformedDigest:
    @pytest.mark.parametrize("digest", ["", "plaintext", "$2b$04$short", "$1$abc$" + "x" * 53])
    def test_malformed_digest_raises(self, hasher: PasswordHasher, digest: str) -> None:
        with pytest.raises(HashError):
            hasher.verify("anything", digest)

    def test_hash_error_is_value_error(self) -> None:
        assert issubclass(HashError, ValueError)


class TestRehash:
    def test_same_cost_needs_no_rehash(self, hasher: PasswordHasher) -> None:
        assert hasher.needs_rehash(hasher.hash("pw123456")) is False

    def test_different_cost_needs_rehash(self, hasher: PasswordHasher) -> None:
        old = PasswordHasher(rounds=5).hash("pw123456")
        assert hasher.needs_rehash(old) is True
        # Old digests still verify under the new hasher.
        assert hasher.verify("pw123456", old) is True

    @pytest.mark.parametrize("rounds", [3, 32])
    def test_rounds_out_of_range(self, rounds: int) -> None:
        with pytest.raises(ValueError):
            PasswordHasher(rounds=rounds)


class TestLongPasswords:
    def test_hash_refuses_over_72_bytes(self, hasher: PasswordHasher) -> None:
        with pytest.raises(ValueError):
            hasher.hash("a" * (MAX_PASSWORD_BYTES + 1))

    def test_hash_accepts_exactly_72_bytes(self, hasher: PasswordHasher) -> None:
        digest = hasher.hash("a" * MAX_PASSWORD_BYTES)
        assert hasher.verify("a" * MAX_PASSWORD_BYTES, digest) is True

    def test_verify_rejects_suffix_past_72_bytes(self, hasher: PasswordHasher) -> None:
        digest = hasher.hash("a" * MAX_PASSWORD_BYTES)
        assert hasher.verify("a" * MAX_PASSWORD_BYTES + "b", digest) is False

    def test_burn_runs_without_error(self, hasher: PasswordHasher) -> None:
        hasher.burn("whatever")
        hasher.burn("x" * 200)
