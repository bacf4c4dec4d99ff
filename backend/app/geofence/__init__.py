"""
geofence — Zone configuration, pure zone matching and tracking sessions.

Sub-modules:
    models    — Zone, ZoneCategory, Transition, ZoneEvaluation, ZoneMembership
    matcher   — evaluate(): haversine membership + transition detection
    registry  — zone list loading / validation (JSON file or built-in set)
    session   — GeofenceSession: watcher → matcher → relay for one subject
"""
