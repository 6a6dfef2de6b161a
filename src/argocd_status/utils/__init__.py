# ABOUTME: Utilities package initialization for the ArgoCD deployment status service
# ABOUTME: Contains the collaborator clients plus logging and safety helpers

"""
Shared utilities:
    - client.py: ArgoCD API client with retry logic
    - catalog.py: Entity catalog client
    - logging.py: Structured logging with correlation IDs and audit trails
    - safety.py: Rate limiting and read-only guard
"""
