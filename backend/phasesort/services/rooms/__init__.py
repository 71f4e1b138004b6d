"""Room domain services: lockouts, scoring, the room registry, command
dispatch and the deadline sweeper.

Nothing here knows about Socket.IO; the transport hands the dispatcher a
``send(sid, envelope)`` callable and forwards decoded envelopes to it.
"""
