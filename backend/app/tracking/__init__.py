"""
tracking — Continuous device position stream.

Sub-modules:
    models     — PositionSample, TrackingOptions
    providers  — LocationProvider interface + push-fed implementation
    watcher    — PositionWatcher: start/stop tracking, fan-out, bounded history
"""
