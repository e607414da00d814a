"""
app.core.security
~~~~~~~~~~~~~~~~~

房间密码的哈希与校验（可选功能：未设置密码的房间不做任何检查）。
"""
from __future__ import annotations

import hashlib
import hmac
import secrets

_ITERATIONS: int = 100_000


def hash_password(password: str) -> str:
    """返回 ``salt$hash`` 形式的 PBKDF2-SHA256 摘要。"""
    salt = secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("ascii"), _ITERATIONS)
    return f"{salt}${digest.hex()}"


def verify_password(password: str | None, password_hash: str | None) -> bool:
    """校验密码。房间未设置密码时恒为 True。"""
    if not password_hash:
        return True
    if password is None:
        return False
    salt, _, expected = password_hash.partition("$")
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("ascii"), _ITERATIONS)
    return hmac.compare_digest(digest.hex(), expected)
