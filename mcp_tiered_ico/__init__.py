"""
Tiered ICO Package Initialization

This package provides a capped, two-tier token sale built on the Model Context
Protocol (MCP). Contributions are converted into token issuance at a target rate up
to a base target and at a cap rate beyond it, with a hard supply ceiling and a
locked allocation reserved for the issuer.

The package includes:
- Checked uint256 arithmetic
- Owner / controller access checks
- The sale engine: parameters, supply cap precomputation, lifecycle and deposits
- A token ledger, a token timelock and native funds bookkeeping
- Sale deployment registry with JSON persistence
- Deposit rate limiting
- MCP server implementation for easy integration
"""
