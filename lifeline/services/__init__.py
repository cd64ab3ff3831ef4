"""Lifeline microservices.

- Volunteer Service owns the volunteer lifecycle: onboarding, training,
  wellness and crisis-session assignment
- Audit Service provides the append-only audit trail
- All services store applicant identities only as hash_pii() digests
"""
