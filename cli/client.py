from __future__ import annotations

from typing import Any, Dict, Optional

import httpx
import typer

from cli.config import CLIConfig


class ApiClient:
    """Minimal HTTP client for the water monitor service."""

    def __init__(self, config: CLIConfig) -> None:
        self._config = config
        self._client = httpx.Client(base_url=config.base_url, timeout=config.http_timeout)

    def close(self) -> None:
        self._client.close()

    def post_reading(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "/api/sensor-data", json=payload)

    def get_dashboard(self) -> Dict[str, Any]:
        return self._request("GET", "/api/dashboard")

    def get_average(self, sensor_id: Optional[str], mode: str) -> Dict[str, Any]:
        params: Dict[str, str] = {"mode": mode}
        if sensor_id:
            params["sensor_id"] = sensor_id
        return self._request("GET", "/api/average-yesterday", params=params)

    def get_professional_report(
        self,
        sensor_id: Optional[str] = None,
        start: Optional[str] = None,
        end: Optional[str] = None,
        threshold: Optional[float] = None,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {}
        if sensor_id:
            params["sensor_id"] = sensor_id
        if start:
            params["start"] = start
        if end:
            params["end"] = end
        if threshold is not None:
            params["threshold"] = threshold
        return self._request("GET", "/api/generate-professional-report", params=params)

    def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            response = self._client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        except httpx.TransportError as exc:
            typer.secho(
                f"Could not reach {self._config.base_url}: {exc}", fg=typer.colors.RED, err=True
            )
            raise typer.Exit(code=1)
        payload = response.json()
        if not isinstance(payload, dict):
            raise typer.BadParameter(f"Unexpected response payload from {path}.")
        return payload

    @staticmethod
    def _handle_http_error(exc: httpx.HTTPStatusError) -> None:
        detail: str | None = None
        try:
            data = exc.response.json()
            detail = data.get("detail") or data.get("error")
        except (ValueError, AttributeError):
            detail = exc.response.text.strip()
        message = (
            f"Request failed with status {exc.response.status_code}: {detail or 'no detail provided.'}"
        )
        typer.secho(message, fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
