import bcrypt


def hash_password(password: str) -> str:
    # bcrypt.gensalt()產生隨機的鹽值，每次執行都不同，用來防止彩虹表攻擊
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return bcrypt.checkpw(plain_password.encode(), hashed_password.encode())
    except ValueError:
        # Over-long input or a malformed stored hash never matches
        return False
