"""
fern-obs — OBS Studio WebSocket bridge for Fern Shell.

Modules:
  core/     — obs-websocket transport, protocol client, error taxonomy
  state/    — snapshot models, reconciler, debounced state-file publisher
  daemon/   — connection state machine, pollers, supervisor
  commands/ — one-shot command runner
  config/   — Settings, env loading, YAML config
"""

__version__ = "0.1.0"
