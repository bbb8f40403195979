"""Auction engine core: ledger state, value transfers, fees, storage"""
