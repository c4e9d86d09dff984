"""Call relay core: wire protocol, legs, session state machine and teardown.

Nothing in here imports FastAPI or opens sockets; the adapters in
``integrations`` plug concrete transports into ``relay.legs.Leg``.
"""
