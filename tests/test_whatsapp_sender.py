import base64
import unittest
from urllib.parse import parse_qs

import httpx

from college_attendance.communication.templates import TemplateEngine
from college_attendance.communication.whatsapp import DisabledSender, TwilioWhatsAppSender, build_message_sender
from college_attendance.config import Settings


def _sender(handler):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return TwilioWhatsAppSender('AC123', 'secret', '+14155238886', client=client)


class TwilioWhatsAppSenderTests(unittest.TestCase):
    def test_send_posts_form_to_messages_endpoint(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(201, json={'sid': 'SM42', 'status': 'queued'})

        result = _sender(handler).send('98765 43210', 'Hello parent')

        self.assertTrue(result.success)
        self.assertEqual(result.message_id, 'SM42')
        request = seen[0]
        self.assertEqual(request.method, 'POST')
        self.assertEqual(str(request.url), 'https://api.twilio.com/2010-04-01/Accounts/AC123/Messages.json')
        form = parse_qs(request.content.decode())
        self.assertEqual(form['To'], ['whatsapp:+919876543210'])
        self.assertEqual(form['From'], ['whatsapp:+14155238886'])
        self.assertEqual(form['Body'], ['Hello parent'])
        expected = base64.b64encode(b'AC123:secret').decode()
        self.assertEqual(request.headers['Authorization'], f'Basic {expected}')

    def test_provider_error_is_reported(self):
        def handler(request):
            return httpx.Response(400, json={'code': 21211, 'message': "The 'To' number is not valid."})

        result = _sender(handler).send('9876543210', 'Hello')
        self.assertFalse(result.success)
        self.assertEqual(result.error, "The 'To' number is not valid.")

    def test_non_json_error_falls_back_to_status(self):
        result = _sender(lambda request: httpx.Response(503, text='unavailable')).send('9876543210', 'Hello')
        self.assertFalse(result.success)
        self.assertEqual(result.error, 'status=503')

    def test_transport_error_does_not_raise(self):
        def handler(request):
            raise httpx.ConnectError('connection refused', request=request)

        result = _sender(handler).send('9876543210', 'Hello')
        self.assertFalse(result.success)
        self.assertTrue(result.error.startswith('transport_error'))

    def test_invalid_input_never_reaches_provider(self):
        calls = []
        sender = _sender(lambda request: calls.append(request) or httpx.Response(201, json={}))
        self.assertEqual(sender.send('12345', 'Hello').error, 'invalid_phone')
        self.assertEqual(sender.send('', 'Hello').error, 'invalid_phone')
        self.assertEqual(sender.send('9876543210', '   ').error, 'empty_message')
        self.assertEqual(calls, [])


class BuildSenderTests(unittest.TestCase):
    def test_disabled_when_switched_off(self):
        sender = build_message_sender(Settings(_env_file=None, enable_whatsapp_notifications=False))
        self.assertIsInstance(sender, DisabledSender)
        self.assertEqual(sender.send('9876543210', 'Hello').error, 'whatsapp_disabled')
        self.assertEqual(sender.health_check(), (False, 'notifications disabled'))

    def test_disabled_when_credentials_missing(self):
        sender = build_message_sender(Settings(_env_file=None, twilio_account_sid='AC1', twilio_auth_token=''))
        self.assertIsInstance(sender, DisabledSender)
        self.assertIn('twilio_auth_token', sender.health_check()[1])

    def test_configured_sender(self):
        sender = build_message_sender(Settings(
            _env_file=None,
            twilio_account_sid='AC1',
            twilio_auth_token='token',
            twilio_whatsapp_number='whatsapp:+14155238886',
            default_country_code='44',
        ))
        self.assertIsInstance(sender, TwilioWhatsAppSender)
        self.assertEqual(sender.from_number, 'whatsapp:+14155238886')
        self.assertEqual(sender.country_code, '44')


class TemplateTests(unittest.TestCase):
    def setUp(self):
        self.engine = TemplateEngine()
        self.context = {
            'student_name': 'Bhavya',
            'student_id': 'S2',
            'date': '14/07/2026',
            'stream': 'BCA',
            'semester': 1,
            'absent_subjects': ['MATHEMATICS', 'PHYSICS'],
            'institution': 'Sample College',
        }

    def test_full_day_message(self):
        body = self.engine.render('full_day', self.context)
        self.assertIn('ABSENT for the WHOLE DAY on 14/07/2026', body)
        self.assertIn('Total Subjects: 2', body)
        self.assertTrue(body.endswith('Sample College'))

    def test_partial_day_lists_subjects(self):
        body = self.engine.render('partial_day', self.context)
        self.assertIn('1. MATHEMATICS\n2. PHYSICS\n', body)
        self.assertIn('Semester: 1', body)

    def test_missing_context_raises(self):
        context = dict(self.context)
        context.pop('student_name')
        with self.assertRaises(Exception):
            self.engine.render('full_day', context)


if __name__ == '__main__':
    unittest.main()
