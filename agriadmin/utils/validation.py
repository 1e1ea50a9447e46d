"""Field format checks used by registration and KYC forms. All are pure."""

import re
from datetime import date, datetime
from urllib.parse import urlparse

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_RE = re.compile(r"^[6-9]\d{9}$")
AADHAAR_RE = re.compile(r"^\d{12}$")
PAN_RE = re.compile(r"^[A-Z]{5}[0-9]{4}[A-Z]$")
PINCODE_RE = re.compile(r"^[1-9][0-9]{5}$")
NAME_RE = re.compile(r"^[a-zA-Zऀ-ॿ\s'-]+$")
IFSC_RE = re.compile(r"^[A-Z]{4}0[A-Z0-9]{6}$")
BANK_ACCOUNT_RE = re.compile(r"^\d{9,18}$")
SPECIAL_CHAR_RE = re.compile(r"[!@#$%^&*(),.?\":{}|<>]")

MAX_LAND_AREA_ACRES = 10000


def _digits(value) -> str:
    return re.sub(r"\D", "", str(value))


def validate_email(email) -> bool:
    return isinstance(email, str) and bool(EMAIL_RE.match(email.strip()))


def validate_phone(phone) -> bool:
    """Indian mobile number: 10 digits starting with 6-9."""
    return bool(phone) and bool(PHONE_RE.match(_digits(phone)))


def validate_password(password) -> tuple[bool, dict[str, bool]]:
    """Return (is_valid, errors) where each error flag is True when the rule fails."""
    if not isinstance(password, str) or not password:
        errors = dict.fromkeys(("length", "uppercase", "lowercase", "numbers", "special_char"), True)
        return False, errors
    errors = {
        "length": len(password) < 8,
        "uppercase": not re.search(r"[A-Z]", password),
        "lowercase": not re.search(r"[a-z]", password),
        "numbers": not re.search(r"\d", password),
        "special_char": not SPECIAL_CHAR_RE.search(password),
    }
    return not any(errors.values()), errors


def password_strength(password) -> str:
    if not password:
        return "No password"
    is_valid, errors = validate_password(password)
    if is_valid:
        return "Strong"
    failed = sum(errors.values())
    if failed >= 4:
        return "Very Weak"
    if failed >= 3:
        return "Weak"
    if failed >= 2:
        return "Fair"
    return "Good"


def validate_aadhaar(aadhaar) -> bool:
    return bool(aadhaar) and bool(AADHAAR_RE.match(_digits(aadhaar)))


def validate_pan(pan) -> bool:
    return isinstance(pan, str) and bool(PAN_RE.match(pan.upper().strip()))


def validate_pincode(pincode) -> bool:
    return bool(pincode) and bool(PINCODE_RE.match(_digits(pincode)))


def validate_name(name, min_length: int = 2, max_length: int = 50) -> bool:
    if not isinstance(name, str):
        return False
    trimmed = name.strip()
    if not min_length <= len(trimmed) <= max_length:
        return False
    return bool(NAME_RE.match(trimmed))


def validate_age(age, min_age: int = 18, max_age: int = 120) -> bool:
    try:
        value = int(age)
    except (TypeError, ValueError):
        return False
    return min_age <= value <= max_age


def age_on(dob: date, today: date) -> int:
    years = today.year - dob.year
    if (today.month, today.day) < (dob.month, dob.day):
        years -= 1
    return years


def validate_date_of_birth(dob, min_age: int = 18, max_age: int = 120, today: date | None = None):
    """Return (is_valid, age); age is None when the date is unusable or in the future."""
    if not dob:
        return False, None
    if isinstance(dob, datetime):
        dob = dob.date()
    elif isinstance(dob, str):
        try:
            dob = date.fromisoformat(dob[:10])
        except ValueError:
            return False, None
    today = today or date.today()
    if dob > today:
        return False, None
    age = age_on(dob, today)
    return min_age <= age <= max_age, age


def validate_url(url) -> bool:
    if not isinstance(url, str) or not url:
        return False
    parsed = urlparse(url)
    return bool(parsed.scheme) and bool(parsed.netloc or parsed.path)


def validate_ifsc(ifsc) -> bool:
    return isinstance(ifsc, str) and bool(IFSC_RE.match(ifsc.upper().strip()))


def validate_bank_account(account_number) -> bool:
    return bool(account_number) and bool(BANK_ACCOUNT_RE.match(_digits(account_number)))


def validate_land_area(area) -> bool:
    try:
        value = float(area)
    except (TypeError, ValueError):
        return False
    return 0 < value <= MAX_LAND_AREA_ACRES


def validate_file_size(size_bytes: int, max_size_mb: float = 5) -> bool:
    return 0 < size_bytes <= max_size_mb * 1024 * 1024
