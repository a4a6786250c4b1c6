from __future__ import annotations

import logging

import httpx

from college_attendance.communication.base import MessageSender, SendResult
from college_attendance.config import Settings
from college_attendance.core.phone import is_valid_phone, mask_phone, whatsapp_address


logger = logging.getLogger(__name__)


class TwilioWhatsAppSender(MessageSender):
    name = 'twilio_whatsapp'

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        *,
        api_base: str = 'https://api.twilio.com',
        timeout: float = 10.0,
        country_code: str = '91',
        client: httpx.Client | None = None,
    ) -> None:
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number if from_number.startswith('whatsapp:') else f'whatsapp:{from_number}'
        self.api_base = api_base.rstrip('/')
        self.timeout = timeout
        self.country_code = country_code
        self._client = client

    @property
    def messages_url(self) -> str:
        return f'{self.api_base}/2010-04-01/Accounts/{self.account_sid}/Messages.json'

    def _post(self, data: dict[str, str]) -> httpx.Response:
        auth = (self.account_sid, self.auth_token)
        if self._client is not None:
            return self._client.post(self.messages_url, data=data, auth=auth, timeout=self.timeout)
        with httpx.Client(timeout=self.timeout) as client:
            return client.post(self.messages_url, data=data, auth=auth)

    def send(self, phone: str, body: str) -> SendResult:
        if not is_valid_phone(phone):
            return SendResult(success=False, error='invalid_phone')
        text = (body or '').strip()
        if not text:
            return SendResult(success=False, error='empty_message')
        data = {
            'From': self.from_number,
            'To': whatsapp_address(phone, self.country_code),
            'Body': text,
        }
        try:
            response = self._post(data)
        except httpx.HTTPError as exc:
            logger.warning('whatsapp_send_failed to=%s error=%s', mask_phone(phone), exc)
            return SendResult(success=False, error=f'transport_error: {exc}')
        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if response.status_code >= 300:
            error = payload.get('message') or f'status={response.status_code}'
            logger.warning('whatsapp_send_failed to=%s status=%s error=%s', mask_phone(phone), response.status_code, error)
            return SendResult(success=False, error=error)
        return SendResult(success=True, message_id=payload.get('sid'))

    def health_check(self) -> tuple[bool, str]:
        url = f'{self.api_base}/2010-04-01/Accounts/{self.account_sid}.json'
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.get(url, auth=(self.account_sid, self.auth_token))
        except httpx.HTTPError as exc:
            return False, f'transport_error: {exc}'
        return response.status_code < 300, f'status={response.status_code}'


class DisabledSender(MessageSender):
    name = 'disabled'

    def __init__(self, reason: str = 'whatsapp_disabled') -> None:
        self.reason = reason

    def send(self, phone: str, body: str) -> SendResult:
        return SendResult(success=False, error='whatsapp_disabled')

    def health_check(self) -> tuple[bool, str]:
        return False, self.reason


def build_message_sender(config: Settings) -> MessageSender:
    if not config.enable_whatsapp_notifications:
        return DisabledSender('notifications disabled')
    missing = [
        key for key in ('twilio_account_sid', 'twilio_auth_token', 'twilio_whatsapp_number')
        if not getattr(config, key)
    ]
    if missing:
        logger.warning('whatsapp_sender_disabled missing=%s', ','.join(missing))
        return DisabledSender(f"Missing fields: {', '.join(missing)}")
    return TwilioWhatsAppSender(
        config.twilio_account_sid,
        config.twilio_auth_token,
        config.twilio_whatsapp_number,
        api_base=config.twilio_api_base,
        timeout=config.twilio_timeout_seconds,
        country_code=config.default_country_code,
    )
