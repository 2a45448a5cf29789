from typing import Any, Dict, Optional

from werkzeug.security import check_password_hash, generate_password_hash

PASSWORD_HASH_PREFIXES = ("scrypt:", "pbkdf2:")


def protect_password(record: Dict[str, Any]) -> Dict[str, Any]:
    """Hashes a plaintext `password` field in place; already-hashed values pass through."""
    password = record.get("password")
    if password and not str(password).startswith(PASSWORD_HASH_PREFIXES):
        record["password"] = generate_password_hash(str(password))
    return record


def password_matches(record: Optional[Dict[str, Any]], password: Any) -> bool:
    if not record or not record.get("password") or not password:
        return False
    return check_password_hash(record["password"], str(password))


def carry_password(record: Dict[str, Any], existing: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Prepares a record for an upsert over `existing`: a plaintext password
    that still matches the stored hash keeps that hash, so replaying the same
    record leaves the stored document unchanged.
    """
    password = record.get("password")
    if password and not str(password).startswith(PASSWORD_HASH_PREFIXES) and password_matches(existing, password):
        record["password"] = existing["password"]
        return record
    return protect_password(record)
