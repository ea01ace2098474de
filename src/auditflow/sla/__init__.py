"""
SLA Monitoring Module
=====================

Bounded Context for Service Level Agreement monitoring and escalation.

Responsibilities:
- Calculate response and resolution deadlines per severity policy
- Evaluate open subjects on a fixed interval
- Emit deduplicated warning and breach alerts
- Escalate up the policy's ladder, never back down
- Hot-reload policies from YAML via watchdog
"""
