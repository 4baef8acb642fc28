"""Message log, read receipts and unread counts.

Components:
    - MessageStore: append-only per-room message log
    - ReadReceiptTracker: idempotent per-(message, user) receipts
    - UnreadAggregator: unread counts derived from the two above
    - ChatService: the facade the REST router and the gateway share
"""
