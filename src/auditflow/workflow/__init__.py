"""
Approval Workflow Module
========================

Bounded Context for multi-step approvals.

Responsibilities:
- Validate and store workflow definitions (ordered approval steps)
- Instantiate steps when an approval request starts
- Apply approve / reject / skip decisions and aggregate request status
- Keep an audit trail of every action
- Report request lifecycle events to listeners (SLA monitoring)
"""
