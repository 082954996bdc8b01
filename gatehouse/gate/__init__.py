"""Gatehouse request gates.

Layout:
    middleware.py — SecurityGate (csrf_gate, rate_limit_gate, presets), CsrfGateConfig
    presets.py    — preset GateConfigs and their on_limit_reached callbacks
    responses.py  — GateRejection + 403/429 builders + install_gate_handlers()
    limiter.py    — slowapi limiter for the token issuance endpoint
"""

from gatehouse.gate.middleware import CsrfGateConfig, GateAttempt, SecurityGate, capture_identity
from gatehouse.gate.presets import PRESETS, build_preset
from gatehouse.gate.responses import (
    GateRejection,
    build_csrf_rejection,
    build_lockout_rejection,
    install_gate_handlers,
)

__all__ = [
    "PRESETS",
    "CsrfGateConfig",
    "GateAttempt",
    "GateRejection",
    "SecurityGate",
    "build_csrf_rejection",
    "build_lockout_rejection",
    "build_preset",
    "capture_identity",
    "install_gate_handlers",
]
