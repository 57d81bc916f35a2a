"""
Unit tests for ComputeRestClient.
"""

import unittest
from unittest.mock import MagicMock, patch

from google.auth.exceptions import DefaultCredentialsError

from clients import ComputeRestClient
from errors import PreconditionError, QueryError
from models import Machine


class TestComputeRestClient(unittest.TestCase):
    """Test ComputeRestClient REST API interactions."""

    def setUp(self):
        """Set up test fixtures."""
        with patch("google.auth.default") as mock_auth:
            mock_creds = MagicMock()
            mock_auth.return_value = (mock_creds, None)
            self.client = ComputeRestClient()
        self.session = MagicMock()
        self.client.session = self.session
        self.machine = Machine(
            name="docker-builder-vm", zone="europe-west1-b", project_id="test-project"
        )

    def _response(self, status_code, payload=None, text=""):
        resp = MagicMock()
        resp.status_code = status_code
        resp.json.return_value = payload or {}
        resp.text = text
        resp.headers = {}
        return resp

    def test_client_initialization(self):
        """Test client is properly initialised."""
        self.assertEqual(self.client.timeout_s, 60)
        self.assertEqual(self.client.max_retries, 5)
        self.assertEqual(self.client.base_delay, 2.0)

    def test_missing_credentials_is_precondition_error(self):
        """Test missing Application Default Credentials fail as a precondition."""
        with patch("google.auth.default", side_effect=DefaultCredentialsError("none")):
            with self.assertRaises(PreconditionError):
                ComputeRestClient()

    def test_url_construction(self):
        """Test API URL construction."""
        url = self.client._url(self.machine.resource_path)
        self.assertEqual(
            url,
            "https://compute.googleapis.com/compute/v1/projects/test-project/"
            "zones/europe-west1-b/instances/docker-builder-vm",
        )

    def test_get_instance_success(self):
        """Test describing an instance."""
        self.session.get.return_value = self._response(
            200, {"name": "docker-builder-vm", "status": "RUNNING"}
        )

        data = self.client.get_instance(self.machine)

        self.assertEqual(data["status"], "RUNNING")
        called_url = self.session.get.call_args[0][0]
        self.assertTrue(called_url.endswith("/instances/docker-builder-vm"))

    def test_get_instance_not_found(self):
        """Test a 404 becomes a QueryError flagged not_found."""
        self.session.get.return_value = self._response(404, text="Not found")

        with self.assertRaises(QueryError) as ctx:
            self.client.get_instance(self.machine)

        self.assertTrue(ctx.exception.not_found)

    def test_get_instance_forbidden(self):
        """Test other failures are QueryErrors without not_found."""
        self.session.get.return_value = self._response(403, text="Forbidden")

        with self.assertRaises(QueryError) as ctx:
            self.client.get_instance(self.machine)

        self.assertFalse(ctx.exception.not_found)

    @patch("clients.time.sleep")
    def test_get_instance_retries_exhausted(self, mock_sleep):
        """Test exhausted retries surface as a QueryError."""
        self.client.max_retries = 1
        self.session.get.side_effect = ConnectionError("network down")

        with self.assertRaises(QueryError):
            self.client.get_instance(self.machine)

        self.assertEqual(self.session.get.call_count, 2)

    def test_start_instance_success(self):
        """Test starting an instance returns the operation name."""
        self.session.post.return_value = self._response(200, {"name": "operation-123"})

        op_name = self.client.start_instance(self.machine)

        self.assertEqual(op_name, "operation-123")
        called_url = self.session.post.call_args[0][0]
        self.assertTrue(called_url.endswith("/instances/docker-builder-vm/start"))

    def test_stop_instance_success(self):
        """Test stopping an instance returns the operation name."""
        self.session.post.return_value = self._response(200, {"name": "operation-456"})

        op_name = self.client.stop_instance(self.machine)

        self.assertEqual(op_name, "operation-456")
        called_url = self.session.post.call_args[0][0]
        self.assertTrue(called_url.endswith("/instances/docker-builder-vm/stop"))

    def test_start_instance_failure(self):
        """Test a rejected start raises RuntimeError."""
        self.session.post.return_value = self._response(400, text="Bad request")

        with self.assertRaises(RuntimeError):
            self.client.start_instance(self.machine)

    def test_start_instance_unexpected_response(self):
        """Test a response without an operation name raises RuntimeError."""
        self.session.post.return_value = self._response(200, {"kind": "compute#operation"})

        with self.assertRaises(RuntimeError):
            self.client.start_instance(self.machine)

    def test_get_operation_success(self):
        """Test reading a zone operation."""
        self.session.get.return_value = self._response(
            200, {"name": "operation-123", "status": "DONE"}
        )

        op = self.client.get_operation(self.machine, "operation-123")

        self.assertEqual(op["status"], "DONE")
        called_url = self.session.get.call_args[0][0]
        self.assertIn("zones/europe-west1-b/operations/operation-123", called_url)

    @patch("clients.time.sleep")
    def test_request_with_retry_on_503(self, mock_sleep):
        """Test retry logic on a 503 error."""
        failed_response = self._response(503, {"error": {"message": "Unavailable"}})
        success_response = self._response(200, {"status": "RUNNING"})
        self.session.get.side_effect = [failed_response, success_response]

        result = self.client._request_with_retry("GET", "https://example.com/test")

        self.assertEqual(result["status_code"], 200)
        self.assertEqual(self.session.get.call_count, 2)
        self.assertTrue(mock_sleep.called)

    def test_unsupported_method(self):
        """Test unsupported HTTP methods are rejected without retrying."""
        with self.assertRaises(ValueError):
            self.client._request_with_retry("DELETE", "https://example.com/test")

    def test_calculate_delay_with_retry_after_header(self):
        """Test delay calculation when Retry-After header is present."""
        mock_response = MagicMock()
        mock_response.headers = {"Retry-After": "10"}

        delay = self.client._calculate_delay(0, mock_response)

        self.assertEqual(delay, 10.0)

    def test_calculate_delay_is_capped(self):
        """Test exponential backoff is capped."""
        delay = self.client._calculate_delay(20)
        self.assertLessEqual(delay, 60.0)


if __name__ == "__main__":
    unittest.main()
