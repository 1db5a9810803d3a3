"""
Per-patient memory notes persisted in a key-value store.
"""
