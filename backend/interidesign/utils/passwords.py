from passlib.context import CryptContext

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed_password: str | None) -> bool:
    # Provider-only accounts have no local password
    if not hashed_password:
        return False
    return pwd_context.verify(password, hashed_password)
