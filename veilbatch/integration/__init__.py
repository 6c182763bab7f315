"""
Integration layer: configuration, logging, counter sources and the ledger
transport used by the clearing agent.

Submodules are imported directly (e.g. `veilbatch.integration.config`).
"""
