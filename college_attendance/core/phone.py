from __future__ import annotations

import re

from college_attendance.config import settings


_PHONE_RE = re.compile(r'^\+?[0-9]{10,15}$')
_STRIP_RE = re.compile(r'[\s\-()]')


def normalize_phone(phone: str) -> str:
    return ''.join(ch for ch in str(phone or '') if ch.isdigit())


def is_valid_phone(phone: str | None) -> bool:
    if not phone:
        return False
    return bool(_PHONE_RE.match(_STRIP_RE.sub('', str(phone))))


def whatsapp_address(phone: str, country_code: str | None = None) -> str:
    digits = normalize_phone(phone)
    code = country_code if country_code is not None else settings.default_country_code
    if len(digits) == 10 and code:
        digits = f'{code}{digits}'
    return f'whatsapp:+{digits}'


def mask_phone(phone: str | None) -> str:
    digits = normalize_phone(phone or '')
    if not digits:
        return ''
    return f'****{digits[-4:]}'
