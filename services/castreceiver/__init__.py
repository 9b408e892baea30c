"""
castreceiver — playback receiver core.

The receiver takes commands from a paired sender, resolves them against the
catalog server and drives one playback session on the local display device.

Modules:
  bitrate.py         — bitrate detection cache (override / TTL / probe)
  media_source.py    — source selection and stream descriptor building
  playback_state.py  — the session record and the immutable stream descriptor
  stream_change.py   — seek / track change / load state machine
  progress.py        — progress, start and stop reporting
  session.py         — per-sender session context and intent queue
  commands.py        — inbound sender command validation and dispatch
  catalog.py         — catalog server HTTP client
  mpv_engine.py      — mpv-backed player and text-track engine
  engine.py          — player and text-track engine interfaces, subtitle style
  device_profile.py  — device bitrate ceiling and playback profile
  message_bus.py     — connected senders, broadcasts and error messages
  receiver_base.py   — aiohttp HTTP + WebSocket plumbing
  config.py          — JSON config loader
  errors.py          — error types and the sender message each maps to
  watchdog.py        — systemd notify and watchdog pings
"""
