"""Remote-to-local reconciliation of synced entities"""
