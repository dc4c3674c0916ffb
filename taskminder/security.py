from passlib.context import CryptContext

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# bcrypt only looks at the first 72 bytes of a secret
BCRYPT_MAX_BYTES = 72


def _truncate(password: str) -> bytes:
    return password.encode("utf-8")[:BCRYPT_MAX_BYTES]


def get_password_hash(password: str) -> str:
    """
    Hashes a plain-text password with a fresh salt.
    """
    return pwd_context.hash(_truncate(password))


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Checks a plain-text password against a stored hash. Malformed hashes never match.
    """
    try:
        return pwd_context.verify(_truncate(plain_password), hashed_password)
    except ValueError:
        return False
