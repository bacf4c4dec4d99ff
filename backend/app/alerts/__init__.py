"""
alerts — Alert relay with offline fallback.

Sub-modules:
    models        — AlertRecord, severities, delivery states, bus envelope
    relay         — AlertRelay: backend write, offline fallback, replay
    store         — bounded offline queue (JSON file, Redis, memory)
    bus           — same-host publish/subscribe for admin views
    backends      — hosted backend writers (Supabase REST, SQL)
    connectivity  — online/offline state + periodic replay scheduler
    feed          — admin-side alert feed
    panic         — cancellable panic-button countdown
"""
