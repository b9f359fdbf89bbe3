"""
Issue Monitor.

Monitoring and alerting engine for an issue-automation service. Tracks the
health of the GitHub API dependency and the auto-labeling classifier,
aggregates telemetry, raises and resolves alerts, and renders dashboards.
"""

__version__ = "0.1.0"
