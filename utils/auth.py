# utils/auth.py
from werkzeug.security import generate_password_hash, check_password_hash

def hash_password(password):
    """Hashes a password for storage."""
    return generate_password_hash(password)

def check_password(hashed_password, provided_password):
    """Checks if a provided password matches a stored hash."""
    if not hashed_password:
        return False
    return check_password_hash(hashed_password, provided_password)
