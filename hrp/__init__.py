"""Header Routing Proxy (HRP).

Redirects each request to the container whose name contains the routing key
carried in a request header. Container addresses are discovered from the
orchestrator control plane (ECS or Docker Swarm) and cached as an immutable
snapshot that is rebuilt on demand when a key is not found.
"""
