"""
TopstepX MCP Server
===================
Model Context Protocol server for the TopstepX / ProjectX trading API.

Features:
- Account and contract reference data with periodic refresh
- Contract search and details
- Order placement, modification and cancellation
- Historical bars and latest market data
"""

__version__ = "0.1.0"
