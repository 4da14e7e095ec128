"""OpenCode patch orchestration: declare, order, apply and verify source patches."""
