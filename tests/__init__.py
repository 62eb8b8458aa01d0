"""
DhanSetu gateway test suite.

Unit tests for the core utilities and chain gateways, and service-level tests
for the Payment Ledger, Subscription Engine, Wallet Service and HTTP API.
"""
