import re
import string

# Define allowed special characters (excluding space)
SPECIAL_CHARS = string.punctuation.replace(' ', '')

# bcrypt only looks at the first 72 bytes of a password
MAX_PASSWORD_BYTES = 72

_CONTROL_CHARS = re.compile(r'[\x00-\x1f\x7f]')


class PasswordValidationError(Exception):
    """Password validation error exception"""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__('; '.join(errors))


def validate_password_complexity(password: str) -> None:
    """
    Validate account password requirements.

    Rules:
    - 8 to 72 bytes long
    - At least 1 uppercase letter, 1 lowercase letter, 1 digit
    - At least 1 special character

    Raises:
        PasswordValidationError: When password does not meet requirements
    """
    errors = []

    if len(password) < 8:
        errors.append("Password must be at least 8 characters long")

    if len(password.encode()) > MAX_PASSWORD_BYTES:
        errors.append(f"Password must be at most {MAX_PASSWORD_BYTES} bytes long")

    if not re.search(r'[A-Z]', password):
        errors.append("Password must contain at least 1 uppercase letter")

    if not re.search(r'[a-z]', password):
        errors.append("Password must contain at least 1 lowercase letter")

    if not re.search(r'\d', password):
        errors.append("Password must contain at least 1 digit")

    if not re.search(rf'[{re.escape(SPECIAL_CHARS)}]', password):
        errors.append(f"Password must contain at least 1 special character ({SPECIAL_CHARS})")

    if errors:
        raise PasswordValidationError(errors)


def validate_share_password(password: str) -> None:
    """
    Validate a share link password.

    Share passwords are typed by whoever receives the link, so only the
    limits bcrypt and query strings impose apply: at most 72 bytes and no
    control characters.

    Raises:
        PasswordValidationError: When password does not meet requirements
    """
    errors = []

    if len(password.encode()) > MAX_PASSWORD_BYTES:
        errors.append(f"Password must be at most {MAX_PASSWORD_BYTES} bytes long")

    if _CONTROL_CHARS.search(password):
        errors.append("Password must not contain control characters")

    if errors:
        raise PasswordValidationError(errors)
