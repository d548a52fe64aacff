from __future__ import annotations

import json
import unittest
import urllib.error
from unittest.mock import MagicMock, patch

from domain.errors import AuthenticationFailed, HttpError, NetworkError, NotFound
from infrastructure.bank_api.http_client import HttpBankApi
from infrastructure.bank_api.in_memory import DEMO_EMAIL, DEMO_PASSWORD, InMemoryBankApi
from infrastructure.bank_api.provider import BankApi, call_api, unwrap


class _StaticApi(BankApi):
    def __init__(self, error: Exception | None = None, payload=None) -> None:
        self.error = error
        self.payload = payload

    async def fetch(self, operation, params=None, token=None):
        if self.error is not None:
            raise self.error
        return self.payload


class BuildRequestTests(unittest.TestCase):
    def setUp(self) -> None:
        self.api = HttpBankApi(base_url="https://bank.test/v1/", timeout_seconds=5)

    def test_path_parameters_and_bearer_token(self) -> None:
        request = self.api.build_request("account", {"account_id": "a b"}, "tok-1")
        self.assertEqual(request.get_method(), "GET")
        self.assertEqual(request.full_url, "https://bank.test/v1/accounts/a%20b")
        self.assertEqual(request.get_header("Authorization"), "Bearer tok-1")

    def test_reads_use_the_query_string(self) -> None:
        request = self.api.build_request("transactions", {"page": 1, "type": "expense", "status": None}, None)
        self.assertEqual(request.full_url, "https://bank.test/v1/transactions?page=1&type=expense")
        self.assertIsNone(request.data)
        self.assertFalse(request.has_header("Authorization"))

    def test_writes_send_a_json_body(self) -> None:
        request = self.api.build_request("create-transfer", {"recipientAccount": "408", "amount": 5}, "tok")
        self.assertEqual(request.get_method(), "POST")
        self.assertEqual(request.full_url, "https://bank.test/v1/transfers")
        self.assertEqual(json.loads(request.data), {"recipientAccount": "408", "amount": 5})

    def test_unknown_operation_and_missing_path_parameter(self) -> None:
        with self.assertRaises(ValueError):
            self.api.build_request("delete-everything", {}, None)
        with self.assertRaises(ValueError):
            self.api.build_request("transaction", {}, None)

    def test_defaults_come_from_the_environment(self) -> None:
        with patch.dict("os.environ", {"BANK_API_BASE_URL": "https://env.test/v2", "BANK_API_TIMEOUT_SECONDS": "7"}):
            api = HttpBankApi()
        self.assertEqual(api.base_url, "https://env.test/v2")
        self.assertEqual(api.timeout_seconds, 7.0)


class SendTests(unittest.TestCase):
    def setUp(self) -> None:
        self.api = HttpBankApi(base_url="https://bank.test/v1", timeout_seconds=5)
        self.request = self.api.build_request("accounts", {}, "tok")

    @patch("infrastructure.bank_api.http_client.urllib.request.urlopen")
    def test_parses_json(self, urlopen: MagicMock) -> None:
        urlopen.return_value.__enter__.return_value.read.return_value = b'{"data": [], "success": true}'
        self.assertEqual(self.api._send("accounts", self.request), {"data": [], "success": True})

    @patch("infrastructure.bank_api.http_client.urllib.request.urlopen")
    def test_http_errors_keep_their_status(self, urlopen: MagicMock) -> None:
        urlopen.side_effect = urllib.error.HTTPError(self.request.full_url, 503, "unavailable", hdrs=None, fp=None)
        with self.assertRaises(HttpError) as ctx:
            self.api._send("accounts", self.request)
        self.assertEqual(ctx.exception.status, 503)
        self.assertTrue(ctx.exception.transient)

    @patch("infrastructure.bank_api.http_client.urllib.request.urlopen")
    def test_transport_errors_become_network_errors(self, urlopen: MagicMock) -> None:
        urlopen.side_effect = urllib.error.URLError("connection refused")
        with self.assertRaises(NetworkError):
            self.api._send("accounts", self.request)

    @patch("infrastructure.bank_api.http_client.urllib.request.urlopen")
    def test_invalid_json_is_a_network_error(self, urlopen: MagicMock) -> None:
        urlopen.return_value.__enter__.return_value.read.return_value = b"<html>"
        with self.assertRaises(NetworkError):
            self.api._send("accounts", self.request)


class EnvelopeTests(unittest.IsolatedAsyncioTestCase):
    def test_unwrap(self) -> None:
        self.assertEqual(unwrap("accounts", {"data": [1], "success": True}), [1])
        self.assertEqual(unwrap("exchange-rates", {"USD": 90.0}), {"USD": 90.0})
        with self.assertRaises(HttpError) as ctx:
            unwrap("create-transfer", {"data": None, "success": False, "message": "Limit exceeded"})
        self.assertEqual(ctx.exception.status, 400)
        self.assertIn("Limit exceeded", str(ctx.exception))

    async def test_call_api_maps_statuses(self) -> None:
        with self.assertRaises(AuthenticationFailed):
            await call_api(_StaticApi(HttpError(403)), "accounts")
        with self.assertRaises(NotFound):
            await call_api(_StaticApi(HttpError(404)), "account", {"account_id": "x"})
        with self.assertRaises(HttpError):
            await call_api(_StaticApi(HttpError(500)), "accounts")
        self.assertEqual(await call_api(_StaticApi(payload={"data": "ok", "success": True}), "user"), "ok")


class InMemoryBankApiTests(unittest.IsolatedAsyncioTestCase):
    async def test_login_issues_a_usable_token(self) -> None:
        api = InMemoryBankApi()
        result = await api.fetch("login", {"email": DEMO_EMAIL, "password": DEMO_PASSWORD})
        token = result["data"]["token"]

        accounts = await api.fetch("accounts", token=token)
        self.assertTrue(accounts["success"])
        self.assertEqual([row["id"] for row in accounts["data"]], ["1", "2"])
        self.assertEqual(api.count("accounts"), 1)

    async def test_rejects_bad_credentials_and_missing_tokens(self) -> None:
        api = InMemoryBankApi()
        with self.assertRaises(HttpError) as bad_login:
            await api.fetch("login", {"email": DEMO_EMAIL, "password": "nope"})
        self.assertEqual(bad_login.exception.status, 401)

        with self.assertRaises(HttpError) as no_token:
            await api.fetch("accounts")
        self.assertEqual(no_token.exception.status, 401)

    async def test_unknown_records_and_operations_are_404(self) -> None:
        api = InMemoryBankApi()
        token = api.issue_token()
        with self.assertRaises(HttpError) as missing:
            await api.fetch("transaction", {"transaction_id": "404"}, token)
        self.assertEqual(missing.exception.status, 404)
        with self.assertRaises(HttpError) as unknown:
            await api.fetch("close-account", {}, token)
        self.assertEqual(unknown.exception.status, 404)

    async def test_filters_transactions(self) -> None:
        api = InMemoryBankApi()
        token = api.issue_token()
        result = await api.fetch("transactions", {"type": "income"}, token)
        self.assertEqual([row["description"] for row in result["data"]], ["Salary"])


if __name__ == "__main__":
    unittest.main()
