# shared/code_utils.py
import secrets

# No 0/O or 1/I so codes survive being read aloud or typed from a text
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


def generate_code(length: int = 8) -> str:
    """Random human-friendly code used for partner invites and referrals"""
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def generate_numeric_code(length: int = 6) -> str:
    """Random digit string used for phone verification"""
    return "".join(str(secrets.randbelow(10)) for _ in range(length))
