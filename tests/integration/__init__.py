"""
Integration tests for the Issue Monitor.

These tests verify that components work together correctly: telemetry
flowing through the orchestrator into alerts, notifications, the
dashboard app and the command line.

External services are mocked; nothing leaves the process.

Run with:
    pytest tests/integration/ -v -m integration

Skip with:
    pytest -m "not integration"
"""
