"""
bidvault - Auction/escrow engine

An open ascending auction ledger integrating:
- Minimum-raise bidding with anti-sniping deadline extension
- Fee-bearing refunds for displaced bidders
- Reentrancy-safe value transfers with atomic rollback
- Operator settlement and emergency drain
"""

__version__ = "0.1.0"
