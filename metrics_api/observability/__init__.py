"""Observability plumbing for the metrics API.

Logs go through structlog (JSON on stdout, request context via contextvars);
traces and metrics go through the OpenTelemetry SDK, rendered for Prometheus by
prometheus_client.
"""
