"""
auth/passwords.py -- Password hashing and credential shape policy.

Passwords: bcrypt used directly (no passlib wrapper). Bcrypt's cost factor
makes brute-force expensive and checkpw() compares in constant time. Every
stored hash is exactly 60 characters.

bcrypt only looks at the first 72 bytes of a password, and recent releases
refuse longer inputs outright, so the strength check rejects them up front.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import re

import bcrypt

BCRYPT_HASH_LENGTH = 60
BCRYPT_MAX_BYTES = 72
USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 64

_USERNAME_RE = re.compile(r"^[a-z0-9_.-]+$")


def hash_password(plain: str, rounds: int = 12) -> str:
    """Return a bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    Any bcrypt error (malformed hash, over-long input) counts as a mismatch.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


def normalize_username(username: str) -> str:
    return username.strip().lower()


def username_problems(username: str) -> list[str]:
    """Return human-readable reasons a normalized username is unacceptable."""
    problems: list[str] = []
    if len(username) < USERNAME_MIN_LENGTH:
        problems.append(f"Username must be at least {USERNAME_MIN_LENGTH} characters.")
    if len(username) > USERNAME_MAX_LENGTH:
        problems.append(f"Username must be at most {USERNAME_MAX_LENGTH} characters.")
    if username and not _USERNAME_RE.match(username):
        problems.append("Username may contain only letters, digits, '.', '_' and '-'.")
    return problems


def password_problems(password: str, min_length: int) -> list[str]:
    """Return reasons a new password fails the complexity policy.

    Policy: at least min_length characters, at most 72 bytes, and at least one
    lowercase letter, one uppercase letter, and one digit.
    """
    problems: list[str] = []
    if len(password) < min_length:
        problems.append(f"Password must be at least {min_length} characters.")
    if len(password.encode("utf-8")) > BCRYPT_MAX_BYTES:
        problems.append(f"Password must be at most {BCRYPT_MAX_BYTES} bytes.")
    if not (re.search(r"[a-z]", password) and re.search(r"[A-Z]", password) and re.search(r"\d", password)):
        problems.append("Password must contain uppercase, lowercase, and a number.")
    return problems
