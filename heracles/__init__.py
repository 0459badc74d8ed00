"""Heracles: dashboards for Prometheus metrics and Loki/VictoriaLogs streams.

Dashboards are declared in YAML, resolved into live upstream queries at
request time and reshaped into one JSON contract for the browser renderer.
"""

__version__ = "0.1.0"
