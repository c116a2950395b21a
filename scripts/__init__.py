"""
scripts/__init__.py
-------------------
EHR Billing Relay — Operator scripts

Modules:
    send_transaction.py: post a transaction to a running relay

Author: Shreelakshmi Gopinatha Rao
Project: EHR Billing Relay
"""
