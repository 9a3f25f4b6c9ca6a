# Communication Service Contracts

"""
Communication Service Contract Module

This module contains:
- data_contract.py: re-exported models and test data factories
"""
