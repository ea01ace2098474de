"""
Auditflow
=========

Approval workflows with SLA monitoring and escalation.

Bounded contexts:
- workflow: multi-step approval requests
- sla: deadlines, alerts and escalation ladders
"""

__version__ = "1.0.0"
