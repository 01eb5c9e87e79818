"""Node agent.

Per-node agent that keeps the service containers on this machine in sync with
the declarative tree stored in Consul under ``instances/<instance-id>/services``:
 - watches the tree with blocking queries
 - reconciles running, agent-managed Docker containers against it
 - pushes each service's config slice to its control-plane endpoint
"""
