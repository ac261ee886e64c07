"""ID generation utilities."""

import secrets

from nanoid import generate

ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"
ID_LENGTH = 12


def gen_id(prefix: str) -> str:
    return f"{prefix}{generate(ALPHABET, ID_LENGTH)}"


def profile_id() -> str:
    return gen_id("us_")


def task_id() -> str:
    return gen_id("tk_")


def application_id() -> str:
    return gen_id("ap_")


def api_key() -> str:
    return f"nh_{secrets.token_urlsafe(24)}"
