"""
Failure notification infrastructure:
- Ledger of failures already reported
- Outbound email delivery
"""
