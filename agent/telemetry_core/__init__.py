"""
telemetry_core — Telemetry & Presence Agent v1.4
================================================
Architecture: one asyncio loop, blocking HTTP in worker threads,
one time-boxed probe subprocess per metrics cycle.

  constants.py    → Version, intervals, timeouts, probe tables
  config.py       → Paths, logging, config load/save, helpers
  http_client.py  → HTTP session with retry/pooling + CA bundle
  models.py       → MetricsSnapshot, ProbeDocument, status/signal enums
  executor.py     → MetricQueryExecutor (single in-flight subprocess)
  probe.py        → The probe itself (python -m telemetry_core.probe)
  platform_win.py → Windows: idle time, foreground window, power status
  facts.py        → StaticFactCache (computer name, OS, user)
  derived.py      → Network throughput + active-time accumulation
  collector.py    → MetricsCollector (one snapshot per call, never raises)
  presence.py     → LifecycleHub + PresenceStateMachine
  api.py          → Server API calls (heartbeat, metrics, public IP)
  heartbeat.py    → HeartbeatReporter (periodic + edge, fail-stop)
  network.py      → Local IP, offline metrics buffer
  app.py          → AgentApp (asyncio host wiring)
  runner.py       → main() + auto-restart wrapper
"""
