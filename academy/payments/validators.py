import re

# Ouganda: 07XXXXXXXX, +2567XXXXXXXX ou 7XXXXXXXX
PHONE_RE = re.compile(r"^(\+256|0)?[7][0-9]{8}$")

def is_valid_phone(phone_number: str) -> bool:
    return bool(PHONE_RE.fullmatch(phone_number or ""))

def normalize_msisdn(phone_number: str) -> str:
    """Format MSISDN attendu par MTN: indicatif 256 sans '+' ni zéro initial."""
    digits = (phone_number or "").strip().lstrip("+")
    if digits.startswith("256"):
        return digits
    if digits.startswith("0"):
        return "256" + digits[1:]
    return "256" + digits
