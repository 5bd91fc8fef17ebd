from passlib.context import CryptContext

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# app/utils/password.py

def hash_password(password: str) -> str:
    return pwd_context.hash(password)

def verify_password(plain_password: str, hashed_password) -> bool:
    if not hashed_password:
        return False  # synced/imported accounts have no password yet
    return pwd_context.verify(plain_password, hashed_password)
