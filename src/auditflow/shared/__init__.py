"""
Shared Kernel Module
====================

This module contains shared infrastructure used across all bounded
contexts (SLA Monitoring and Approval Workflows).

Architecture Pattern: Modular Monolith
- Each module (sla, workflow) is a bounded context
- Shared kernel contains only generic infrastructure: logging, keyed
  locks, API middleware

DO NOT add business logic from SLA or Workflow to shared kernel.
"""
