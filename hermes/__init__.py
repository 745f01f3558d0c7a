"""
Hermes - Game Server Fleet Orchestrator

Responsibilities:
- Start/stop game-server instances through docker compose
- Pass commands through to a running instance
- Read logs, status and resource usage
- Back up server files on shutdown
- Keep the persisted server record in sync with the container
- Remove servers and their public DNS records
"""
