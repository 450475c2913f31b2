from __future__ import annotations

import os
import uuid
import logging
from typing import Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .config import CFG
from .errors import DriverError, OperationTimeout


logger = logging.getLogger(__name__)


def _get_job_settings(section: dict | None = None) -> dict:
    job = section if section is not None else (CFG.get("job", {}) or {})
    return {
        "endpoint": str(job.get("endpoint", "")).rstrip("/"),
        "runbook": str(job.get("runbook", "")),
        "parameter_name": str(job.get("parameter_name", "InvoiceIds")),
        "api_version": str(job.get("api_version", "2019-06-01")),
        "token_env": job.get("token_env", "RCPT_JOB_TOKEN"),
        "token_cfg": job.get("token", ""),
        "timeout": float(job.get("request_timeout_seconds", 60)),
        "retries": int(job.get("retries", 3)),
    }


def resolve_token(section: dict | None = None) -> str:
    s = _get_job_settings(section)
    env = s["token_env"]
    return str((env and os.environ.get(env, "")) or s["token_cfg"] or "")


def _build_session(retries: int) -> requests.Session:
    sess = requests.Session()
    retry = Retry(
        total=retries,
        backoff_factor=0.5,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=("GET", "PUT"),
    )
    adapter = HTTPAdapter(max_retries=retry)
    sess.mount("http://", adapter)
    sess.mount("https://", adapter)
    return sess


class AutomationJobClient:
    """Job service over an automation-account REST API.

    Starts a runbook job with one string parameter and reads its status:

        PUT  {endpoint}/jobs/{name}?api-version=...   {"properties": {...}}
        GET  {endpoint}/jobs/{name}?api-version=...   → properties.status
    """

    def __init__(self, section: dict | None = None, session: Optional[requests.Session] = None):
        self._section = section
        self._s = _get_job_settings(section)
        if not self._s["endpoint"] or not self._s["runbook"]:
            raise DriverError("job.endpoint and job.runbook must be configured")
        self._session = session or _build_session(self._s["retries"])
        self._job_name: str | None = None
        self._status: str | None = None

    @property
    def job_name(self) -> str | None:
        return self._job_name

    def _headers(self) -> Dict[str, str]:
        token = resolve_token(self._section)
        if not token:
            raise DriverError(f"Missing job service token: set env {self._s['token_env']} or config job.token")
        return {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}

    def _request(self, method: str, url: str, *, timeout: float, json: Any = None) -> Dict[str, Any]:
        try:
            resp = self._session.request(
                method,
                url,
                params={"api-version": self._s["api_version"]},
                headers=self._headers(),
                json=json,
                timeout=timeout,
            )
            resp.raise_for_status()
        except requests.Timeout:
            raise OperationTimeout(f"{method} {url}", timeout) from None
        except requests.HTTPError as exc:
            code = getattr(exc.response, "status_code", None)
            body = (getattr(exc.response, "text", "") or "")[:300]
            raise DriverError(f"{method} {url} failed: HTTP {code}. Body: {body}") from exc
        except requests.RequestException as exc:
            raise DriverError(f"{method} {url} failed: {exc}") from exc
        return resp.json() if resp.content else {}

    def open_job_surface(self, timeout_s: float) -> None:
        url = f"{self._s['endpoint']}/runbooks/{self._s['runbook']}"
        self._request("GET", url, timeout=timeout_s)
        logger.debug("Runbook %s reachable", self._s["runbook"])

    def start(self, parameter: str) -> None:
        name = str(uuid.uuid4())
        body = {
            "properties": {
                "runbook": {"name": self._s["runbook"]},
                "parameters": {self._s["parameter_name"]: parameter},
            }
        }
        payload = self._request("PUT", f"{self._s['endpoint']}/jobs/{name}", timeout=self._s["timeout"], json=body)
        self._job_name = name
        self._status = ((payload.get("properties") or {}).get("status")) or None
        logger.info("→ Job %s started (%s=%s)", name, self._s["parameter_name"], parameter)

    def refresh(self) -> None:
        if self._job_name is None:
            raise DriverError("refresh() before start()")
        payload = self._request("GET", f"{self._s['endpoint']}/jobs/{self._job_name}", timeout=self._s["timeout"])
        self._status = ((payload.get("properties") or {}).get("status")) or None

    def read_status(self) -> str | None:
        return self._status


__all__ = ["AutomationJobClient", "resolve_token"]
