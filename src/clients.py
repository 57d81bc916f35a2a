"""
REST API client for Compute Engine instances (v1 API).
"""

import logging
import time
from typing import Dict

import google.auth
from google.auth.exceptions import DefaultCredentialsError
from google.auth.transport.requests import AuthorizedSession

from errors import PreconditionError, QueryError
from models import Machine

logger = logging.getLogger(__name__)

API_BASE = "https://compute.googleapis.com/compute/v1"


class ComputeRestClient:
    """REST client for the Compute Engine v1 instances API."""

    RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}

    def __init__(
        self,
        timeout_s: int = 60,
        max_retries: int = 5,
        base_delay: float = 2.0,
    ):
        """
        Initialize the Compute Engine REST client.

        Args:
            timeout_s: Request timeout in seconds
            max_retries: Maximum number of retries for transient errors
            base_delay: Base delay for exponential backoff

        Raises:
            PreconditionError: If Application Default Credentials are missing
        """
        self.timeout_s = timeout_s
        self.max_retries = max_retries
        self.base_delay = base_delay

        try:
            creds, _ = google.auth.default(
                scopes=["https://www.googleapis.com/auth/cloud-platform"]
            )
        except DefaultCredentialsError as e:
            raise PreconditionError(
                "Google Cloud authentication not established. "
                "Run 'gcloud auth application-default login'. "
                f"({e})"
            ) from e
        self.session = AuthorizedSession(creds)

    def _url(self, path: str) -> str:
        """Construct full API URL from path."""
        return f"{API_BASE}/{path.lstrip('/')}"

    def _request_with_retry(self, method: str, url: str, **kwargs) -> dict:
        """
        Execute HTTP request with exponential backoff retry for transient errors.

        Args:
            method: HTTP method (GET, POST)
            url: Request URL
            **kwargs: Additional request parameters

        Returns:
            Dictionary with 'response' and 'status_code' keys

        Raises:
            RuntimeError: If max retries exceeded
        """
        last_error = None

        for attempt in range(self.max_retries + 1):
            try:
                if method.upper() == "GET":
                    resp = self.session.get(url, timeout=self.timeout_s, **kwargs)
                elif method.upper() == "POST":
                    resp = self.session.post(url, timeout=self.timeout_s, **kwargs)
                else:
                    raise ValueError(f"Unsupported method: {method}")

                if resp.status_code in self.RETRYABLE_STATUS_CODES:
                    delay = self._calculate_delay(attempt, resp)
                    error_info = ""
                    try:
                        error_data = resp.json()
                        error_info = error_data.get("error", {}).get("message", "")
                    except ValueError:
                        pass
                    logger.warning(
                        f"Retryable error {resp.status_code} ({error_info}), attempt {attempt + 1}/{self.max_retries + 1}, waiting {delay:.1f}s..."
                    )
                    last_error = (
                        f"HTTP {resp.status_code}: {error_info or resp.text[:200]}"
                    )
                    time.sleep(delay)
                    continue

                return {"response": resp, "status_code": resp.status_code}

            except ValueError:
                raise
            except Exception as e:
                delay = self._calculate_delay(attempt)
                logger.warning(
                    f"Request error: {e}, attempt {attempt + 1}/{self.max_retries + 1}, waiting {delay:.1f}s..."
                )
                last_error = str(e)
                time.sleep(delay)

        raise RuntimeError(f"Max retries exceeded. Last error: {last_error}")

    def _calculate_delay(self, attempt: int, resp=None) -> float:
        """
        Calculate delay with exponential backoff and jitter.

        Args:
            attempt: Current attempt number
            resp: Optional response object (to check Retry-After header)

        Returns:
            Delay in seconds
        """
        if resp is not None and "Retry-After" in resp.headers:
            try:
                return float(resp.headers["Retry-After"])
            except ValueError:
                pass

        delay = self.base_delay * (2**attempt)
        jitter = delay * 0.2 * (0.5 - time.time() % 1)
        return min(delay + jitter, 60.0)

    def get_instance(self, machine: Machine) -> Dict:
        """
        Describe an instance.

        Args:
            machine: Machine reference

        Returns:
            Instance resource as dictionary

        Raises:
            QueryError: If the API call fails or the instance does not exist
        """
        url = self._url(machine.resource_path)
        try:
            result = self._request_with_retry("GET", url)
        except RuntimeError as e:
            raise QueryError(f"Describe {machine.name} failed: {e}") from e
        resp = result["response"]
        if resp.status_code != 200:
            raise QueryError(
                f"Describe {machine.name} failed ({resp.status_code}): {resp.text}",
                not_found=resp.status_code == 404,
            )
        return resp.json()

    def _post_instance_action(self, machine: Machine, action: str) -> Dict:
        url = self._url(f"{machine.resource_path}/{action}")
        result = self._request_with_retry("POST", url, json={})
        resp = result["response"]
        if resp.status_code not in (200, 202):
            raise RuntimeError(f"{action} failed ({resp.status_code}): {resp.text}")
        data = resp.json()
        if "name" not in data:
            raise RuntimeError(f"{action} returned unexpected response: {data}")
        return data

    def start_instance(self, machine: Machine) -> str:
        """
        Request that a stopped instance be started.

        Args:
            machine: Machine reference

        Returns:
            Zone operation name

        Raises:
            RuntimeError: If API call fails
        """
        return self._post_instance_action(machine, "start")["name"]

    def stop_instance(self, machine: Machine) -> str:
        """
        Request that a running instance be stopped.

        Args:
            machine: Machine reference

        Returns:
            Zone operation name

        Raises:
            RuntimeError: If API call fails
        """
        return self._post_instance_action(machine, "stop")["name"]

    def get_operation(self, machine: Machine, op_name: str) -> Dict:
        """
        Get status of a zone operation.

        Args:
            machine: Machine whose zone and project own the operation
            op_name: Operation name

        Returns:
            Operation details as dictionary

        Raises:
            RuntimeError: If API call fails
        """
        url = self._url(
            f"projects/{machine.project_id}/zones/{machine.zone}/operations/{op_name}"
        )
        result = self._request_with_retry("GET", url)
        resp = result["response"]
        if resp.status_code != 200:
            raise RuntimeError(
                f"Get operation failed ({resp.status_code}): {resp.text}"
            )
        return resp.json()
