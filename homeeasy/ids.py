"""ID generation utilities."""

import secrets
import time

from nanoid import generate

ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"
ID_LENGTH = 12


def gen_id(prefix: str) -> str:
    return f"{prefix}{generate(ALPHABET, ID_LENGTH)}"


def user_id() -> str:
    return gen_id("us_")


def task_id() -> str:
    return gen_id("tk_")


def bid_id() -> str:
    return gen_id("bd_")


def conversation_id() -> str:
    return gen_id("cv_")


def message_id() -> str:
    return gen_id("msg_")


def review_id() -> str:
    return gen_id("rv_")


def payment_id() -> str:
    return gen_id("pay_")


def connection_id() -> str:
    return gen_id("cn_")


def payment_intent_id() -> str:
    """Simulated gateway reference, shaped like ``pi_<millis>_<random>``."""
    return f"pi_{int(time.time() * 1000)}_{secrets.token_hex(5)[:9]}"
