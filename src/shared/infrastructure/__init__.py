"""
Shared Infrastructure
=====================

- JSON logging and latency logging
- Injectable clock
- Per-key asyncio locks
- Copy-on-access in-memory tables with an undo journal
- Grafana OTLP exporter for sweep metrics
"""
