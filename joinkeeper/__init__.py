"""
joinkeeper

Controllers for hosted k0s clusters:
- JoinTokenRequest: issues join tokens inside the hosted cluster, projects them
  into Secrets and invalidates them when the request is deleted
- K0sControlPlane: aggregates replica counters, versions and API readiness
  into the control plane status
"""

__version__ = "0.1.0"
